"""
ingestion — Public-data acquisition (KMA weather, AirKorea, MOIS disasters).

Modules:
    models               — canonical WeatherRecord / AirQualityRecord / DisasterMessage
    normalizers          — provider field mapping and range validation
    providers            — httpx API clients
    public_data_service  — cache-first acquisition with retry and stale fallback
"""
