"""Import the Brazilian municipality catalogue from IBGE into ``cities``."""

import logging

import requests as http_requests
from sqlalchemy import func
from sqlalchemy.orm import Session

from meetlines.config import get_settings
from meetlines.errors import UpstreamError
from meetlines.models import City

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
FETCH_TIMEOUT_SECONDS = 60


def fetch_municipalities(url: str) -> list[dict]:
    try:
        resp = http_requests.get(url, timeout=FETCH_TIMEOUT_SECONDS)
        resp.raise_for_status()
        return resp.json()
    except (http_requests.RequestException, ValueError) as e:
        raise UpstreamError(f"Failed to fetch cities: {e}")


def to_city_rows(municipalities: list[dict], country: str) -> list[dict]:
    """Keep municipalities with a resolvable state and shape them as rows."""
    rows = []
    for city in municipalities:
        state = (
            ((((city or {}).get("microrregiao") or {}).get("mesorregiao") or {}).get("UF") or {})
            .get("sigla")
        )
        if not state:
            continue
        rows.append({"name": city["nome"], "state": state, "country": country})
    return rows


def populate_cities(db: Session) -> dict:
    settings = get_settings()
    logger.info("Fetching cities from IBGE API...")
    municipalities = fetch_municipalities(settings.cities_source_url)
    logger.info("Received %d cities from IBGE", len(municipalities))

    rows = to_city_rows(municipalities, settings.cities_country)
    logger.info("Prepared %d cities for insertion", len(rows))

    existing = {
        (name, state, country)
        for name, state, country in db.query(City.name, City.state, City.country).all()
    }

    processed = 0
    for start in range(0, len(rows), BATCH_SIZE):
        batch = rows[start:start + BATCH_SIZE]
        for row in batch:
            key = (row["name"], row["state"], row["country"])
            if key in existing:
                continue
            db.add(City(**row))
            existing.add(key)
        db.commit()
        processed += len(batch)
        logger.info("Processed %d/%d cities", processed, len(rows))

    total = db.query(func.count(City.id)).scalar()
    return {
        "success": True,
        "message": "Successfully populated Brazilian cities",
        "processed": processed,
        "totalInDatabase": total,
    }
