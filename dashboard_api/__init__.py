from dashboard_api.services import ApiClient, AuthService, get_api_client

__all__ = ["ApiClient", "AuthService", "get_api_client"]
