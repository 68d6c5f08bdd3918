from fastapi import Request

from maiat.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services
