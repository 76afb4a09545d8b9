# flightguard/bootstrap.py
#
# Wires the services together from config/settings.py

import logging
from typing import NamedTuple, Optional

from config.settings import AIRPORTDB_API_KEY, DB_PATH
from flightguard.api.airport_directory import AirportDirectoryClient
from flightguard.api.assistant import GenerativeAssistant
from flightguard.api.notifier import EmailNotifier
from flightguard.api.reschedule_workflow import RescheduleWorkflow
from flightguard.api.rescheduler import RescheduleOptionGenerator
from flightguard.api.weather import OpenWeatherClient, TomorrowClient
from flightguard.api.weather_cache import WeatherCache
from flightguard.api.weather_check import WeatherCheckService
from flightguard.api.weather_router import WeatherRouter
from flightguard.db import BookingStore

logger = logging.getLogger(__name__)


class Services(NamedTuple):
    store: BookingStore
    weather_router: WeatherRouter
    weather_check: WeatherCheckService
    workflow: Optional[RescheduleWorkflow]


def build_weather_router(cache: WeatherCache = None) -> WeatherRouter:
    return WeatherRouter(TomorrowClient(), OpenWeatherClient(), cache=cache or WeatherCache())


def build_services(db_path: str = DB_PATH, with_workflow: bool = True) -> Services:
    """
    Build everything from settings.

    Args:
        with_workflow: the sweep doesn't need the generative assistant, so the
            batch job passes False and runs without OPENAI_API_KEY
    Raises:
        ConfigurationError: a required credential is missing
    """
    store = BookingStore(db_path)
    router = build_weather_router()
    notifier = EmailNotifier(store=store)

    airport_directory = None
    if AIRPORTDB_API_KEY:
        airport_directory = AirportDirectoryClient()
    else:
        logger.info("AIRPORTDB_API_KEY not set, runway headings won't be looked up")

    weather_check = WeatherCheckService(store, router, notifier=notifier, airport_directory=airport_directory)

    workflow = None
    if with_workflow:
        generator = RescheduleOptionGenerator(router, GenerativeAssistant(), store)
        workflow = RescheduleWorkflow(store, generator, notifier=notifier)

    return Services(store, router, weather_check, workflow)
