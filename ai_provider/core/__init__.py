"""Configuration, logging and error types shared by the gateway layer."""
