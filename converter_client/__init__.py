"""Python client for the conversion API."""

from converter_client.api_client import ConverterAPIClient

__all__ = ["ConverterAPIClient"]
