"""
EV Dealer Hub - Service dependencies

Services are built once in create_app() and kept on app.state.
"""

from fastapi import Request


def get_db(request: Request):
    return request.app.state.db


def get_payout_service(request: Request):
    return request.app.state.payouts


def get_order_service(request: Request):
    return request.app.state.orders


def get_lead_service(request: Request):
    return request.app.state.leads


def get_availability_service(request: Request):
    return request.app.state.availability


def get_test_ride_service(request: Request):
    return request.app.state.test_rides


def get_notification_service(request: Request):
    return request.app.state.notifier


def get_event_bus(request: Request):
    return request.app.state.events
