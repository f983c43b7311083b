"""HTTP clients and collaborator implementations."""
