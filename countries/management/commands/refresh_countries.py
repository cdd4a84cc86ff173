import logging

from django.core.management.base import BaseCommand, CommandError

from countries.services import ExternalServiceError, RefreshError, refresh_country_data

logger = logging.getLogger('countries')


class Command(BaseCommand):
    help = "Fetch countries and USD exchange rates and refresh the cached records."

    def handle(self, *args, **options):
        try:
            result = refresh_country_data()
        except ExternalServiceError as e:
            raise CommandError(f"External data source unavailable: {e}")
        except RefreshError as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(
            f"{result['message']} ({result['countries_processed']} countries processed)"
        ))
