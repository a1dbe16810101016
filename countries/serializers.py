from rest_framework import serializers
from .models import Country


class CountrySerializer(serializers.ModelSerializer):
    class Meta:
        model = Country
        fields = [
            'id', 'name', 'capital', 'region', 'population',
            'currency_code', 'exchange_rate', 'estimated_gdp',
            'flag_url', 'last_refreshed_at'
        ]
        # estimated_gdp is only ever computed, never taken from a client
        read_only_fields = ['id', 'estimated_gdp', 'last_refreshed_at']

    def validate_exchange_rate(self, value):
        if value is not None and value <= 0:
            raise serializers.ValidationError("must be greater than 0")
        return value

    def validate_currency_code(self, value):
        # Missing codes are reported by validate() below
        if not value:
            return value
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha() or not code.isascii():
            raise serializers.ValidationError("must be a 3-letter currency code")
        return code

    def validate(self, data):
        """
        name, population and currency_code are required for client writes.
        Refresh data never passes through here; see normalizer.normalize.
        """
        errors = {}
        if not data.get("name"):
            errors["name"] = "is required"
        if data.get("population") is None:
            errors["population"] = "is required"
        if not data.get("currency_code"):
            errors["currency_code"] = "is required"

        if errors:
            raise serializers.ValidationError(errors)

        return data


def flatten_errors(errors):
    """DRF error dict -> {field: first message}."""
    flat = {}
    for field, messages in errors.items():
        if isinstance(messages, (list, tuple)):
            flat[field] = str(messages[0]) if messages else "is invalid"
        else:
            flat[field] = str(messages)
    return flat
