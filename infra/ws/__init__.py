from infra.ws.server import JsonWsServer

__all__ = ["JsonWsServer"]
