"""Deploy a graph of interdependent smart contracts with pre-computed addresses."""
