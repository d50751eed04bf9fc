"""
External context builder

Best-effort weather and exchange-rate lookups plus a local system-health
query, merged into one ExternalContext and cached under the `external` TTL.
Each source settles independently: a missing API key, a timeout or a non-2xx
answer leaves that field as None. Nothing is retried before the entry
expires.
"""
import logging
from datetime import timedelta

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils import timezone

from stackims.core.settings_cache import get_setting

from . import analysis
from .context_cache import EXTERNAL_CONTEXT_KEY
from .contexts import ExternalContext
from .fanout import run_all

logger = logging.getLogger(__name__)

WEATHER_URL = 'https://api.openweathermap.org/data/2.5/weather'
EXCHANGE_RATE_URL = 'https://v6.exchangerate-api.com/v6/{api_key}/latest/USD'

DEFAULT_TIMEOUT = 5.0

SYSTEM_HEALTH_UNKNOWN = {
    'db_performance': 'Unknown',
    'last_backup': 'Unknown',
    'active_users': 0,
}


class ExternalServiceError(Exception):
    """A third-party API could not be reached or answered with an error"""


class ExternalContextBuilder:
    """Builds (or returns the cached) ExternalContext"""

    def __init__(self, cache, session=None, timeout=None, max_workers=None, now=None):
        self.cache = cache
        self.session = session or requests.Session()
        if timeout is None:
            timeout = getattr(settings, 'EXTERNAL_API_TIMEOUT', DEFAULT_TIMEOUT)
        self.timeout = timeout
        if max_workers is None:
            max_workers = getattr(settings, 'INSIGHTS_FANOUT_WORKERS', 8)
        self.max_workers = max_workers
        self._now = now or timezone.now

    def build(self, force_refresh=False) -> ExternalContext:
        if force_refresh:
            self.cache.invalidate(EXTERNAL_CONTEXT_KEY)
        return self.cache.get_or_build(EXTERNAL_CONTEXT_KEY, self._build, 'external')

    def _build(self) -> ExternalContext:
        now = self._now()
        try:
            results = run_all(
                {
                    'weather': lambda: self.fetch_weather(now),
                    'economic': lambda: self.fetch_economic(now),
                    'system_health': lambda: self.system_health(now),
                },
                self.max_workers,
            )
            failed = [name for name, result in results.items() if not result.ok]
            context = ExternalContext(
                weather=results['weather'].value_or(None),
                economic=results['economic'].value_or(None),
                industry=self.industry(now),
                system_health=results['system_health'].value_or(dict(SYSTEM_HEALTH_UNKNOWN)),
                degraded=bool(failed),
                failed_sections=failed,
            )
        except Exception:
            logger.exception("Error building external context")
            return ExternalContext.empty()

        if context.degraded:
            logger.warning(f"External context built with failed sections: {', '.join(context.failed_sections)}")
        return context

    def _get_json(self, url, params=None):
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout:
            raise ExternalServiceError(f"Request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(f"Request failed: {e}")
        except ValueError as e:
            raise ExternalServiceError(f"Invalid JSON response: {e}")

    def fetch_weather(self, now):
        api_key = getattr(settings, 'WEATHER_API_KEY', '')
        if not api_key:
            logger.debug("WEATHER_API_KEY not configured, skipping weather lookup")
            return None

        city = getattr(settings, 'WEATHER_CITY', 'New York')
        data = self._get_json(WEATHER_URL, params={'q': city, 'appid': api_key, 'units': 'metric'})
        conditions = data.get('weather') or [{}]
        condition = conditions[0].get('main') or 'Unknown'
        season = analysis.season_for(now)
        return {
            'city': city,
            'condition': condition,
            'temp': (data.get('main') or {}).get('temp', 0),
            'season': season,
            'impact': analysis.weather_impact(condition, season),
        }

    def fetch_economic(self, now):
        api_key = getattr(settings, 'EXCHANGE_RATE_API_KEY', '')
        if not api_key:
            logger.debug("EXCHANGE_RATE_API_KEY not configured, skipping exchange rate lookup")
            return None

        data = self._get_json(EXCHANGE_RATE_URL.format(api_key=api_key))
        if data.get('result') == 'error':
            raise ExternalServiceError(f"Exchange rate API error: {data.get('error-type', 'unknown')}")
        rates = data.get('conversion_rates') or data.get('rates') or {}
        eur_rate = rates.get('EUR')
        return {
            'usd_rate': eur_rate if eur_rate is not None else 1,
            'last_updated': data.get('time_last_update_utc') or data.get('date') or now.isoformat(),
            'market_trend': analysis.market_trend(eur_rate),
        }

    def system_health(self, now):
        User = get_user_model()
        active_users = User.objects.filter(
            activity_logs__created_at__gte=now - timedelta(hours=24)
        ).distinct().count()
        return {
            'db_performance': 'Optimal',
            'last_backup': get_setting('lastBackupTime', 'Unknown') or 'Unknown',
            'active_users': active_users,
        }

    def industry(self, now):
        return {
            'retail_season': analysis.retail_season(now),
            'demand_forecast': analysis.demand_forecast(now),
            'market_trends': list(analysis.MARKET_TRENDS),
            'competitor_pricing': 'Monitor competitor pricing through external APIs',
        }
