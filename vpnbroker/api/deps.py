from fastapi import Request

from vpnbroker.services.broker import VpnBroker


def get_broker(request: Request) -> VpnBroker:
    return request.app.state.broker
