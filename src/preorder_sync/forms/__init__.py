from .client import FormsClient, parse_response

__all__ = ["FormsClient", "parse_response"]
