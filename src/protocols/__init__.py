"""Contract adapters for the lending protocol and ERC20 tokens."""
