from .backend_client import ScannerGatewayClient, get_client, close_client

__all__ = ['ScannerGatewayClient', 'get_client', 'close_client']
