from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from flask import current_app

from mapeditor.domain.geo import BoundingBox, GeoPoint, bbox_around, format_distance, haversine_m
from mapeditor.domain.polygons import SpeciesRef

logger = logging.getLogger(__name__)

DEFAULT_GBIF_API_BASE_URL = "https://api.gbif.org/v1"
DEFAULT_TIMEOUT = 15.0
DEFAULT_LIMIT = 20
UNKNOWN_DATASET_TITLE = "Unknown dataset"


class OccurrenceSearchError(Exception):
    """Raised when the occurrence search API cannot be reached or answers badly."""


class InvestigationInProgress(Exception):
    """Raised when an area investigation is started while another one runs."""


@dataclass(frozen=True)
class DatasetInfo:
    title: str = UNKNOWN_DATASET_TITLE
    publisher: Optional[str] = None


class OccurrenceSearch(Protocol):
    """Interface of the occurrence search backend."""

    async def search_occurrences(self, species_key: int, bbox: BoundingBox, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        ...

    async def get_dataset(self, dataset_key: Optional[str]) -> DatasetInfo:
        ...


class GbifOccurrenceClient:
    """Async client for the GBIF occurrence and dataset APIs."""

    def __init__(
        self,
        base_url: str = DEFAULT_GBIF_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_app_config(cls) -> "GbifOccurrenceClient":
        """Create a client from Flask app configuration."""
        return cls(
            base_url=current_app.config.get("GBIF_API_BASE_URL", DEFAULT_GBIF_API_BASE_URL),
            timeout=float(current_app.config.get("HTTP_TIMEOUT", DEFAULT_TIMEOUT)),
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    async def search_occurrences(self, species_key: int, bbox: BoundingBox, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        """
        Search georeferenced occurrences of a taxon inside a bounding box.

        Raises:
            OccurrenceSearchError: On transport errors, non-2xx answers or
                undecodable bodies.
        """
        params = {
            "taxonKey": species_key,
            "hasCoordinate": "true",
            "decimalLatitude": f"{bbox.south},{bbox.north}",
            "decimalLongitude": f"{bbox.west},{bbox.east}",
            "limit": limit,
        }
        async with self._client() as client:
            try:
                response = await client.get("/occurrence/search", params=params)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as exc:
                logger.warning(f"Occurrence search failed for taxon {species_key}: {exc}")
                raise OccurrenceSearchError(f"Occurrence search failed: {exc}") from exc
            except ValueError as exc:
                raise OccurrenceSearchError("Occurrence search returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise OccurrenceSearchError(f"Occurrence search returned {type(data).__name__} instead of an object")
        results = data.get("results") or []
        if not isinstance(results, list):
            raise OccurrenceSearchError("Occurrence search results are not a list")
        return [record for record in results if isinstance(record, dict)]

    async def get_dataset(self, dataset_key: Optional[str]) -> DatasetInfo:
        """Look up a dataset title and publisher; failures fall back to an unknown dataset."""
        if not dataset_key:
            return DatasetInfo()
        async with self._client() as client:
            try:
                response = await client.get(f"/dataset/{dataset_key}")
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.info(f"Dataset lookup failed for {dataset_key}: {exc}")
                return DatasetInfo()
        if not isinstance(data, dict):
            logger.info(f"Dataset lookup for {dataset_key} returned {type(data).__name__}")
            return DatasetInfo()
        return DatasetInfo(
            title=data.get("title") or UNKNOWN_DATASET_TITLE,
            publisher=data.get("publishingOrganizationTitle") or data.get("publisher"),
        )


@dataclass(frozen=True)
class Occurrence:
    """An occurrence record enriched with its dataset and distance to the clicked point."""

    key: Optional[int]
    scientific_name: str
    lat: float
    lng: float
    distance_m: float
    event_date: Optional[str] = None
    recorded_by: Optional[str] = None
    basis_of_record: Optional[str] = None
    country: Optional[str] = None
    dataset_key: Optional[str] = None
    dataset: DatasetInfo = field(default_factory=DatasetInfo)

    @classmethod
    def from_gbif(cls, record: Dict[str, Any], dataset: DatasetInfo, origin: GeoPoint) -> "Occurrence":
        lat = float(record.get("decimalLatitude") or 0.0)
        lng = float(record.get("decimalLongitude") or 0.0)
        return cls(
            key=record.get("key"),
            scientific_name=record.get("scientificName") or "",
            lat=lat,
            lng=lng,
            distance_m=haversine_m(origin, (lat, lng)),
            event_date=record.get("eventDate"),
            recorded_by=record.get("recordedBy"),
            basis_of_record=record.get("basisOfRecord"),
            country=record.get("country"),
            dataset_key=record.get("datasetKey"),
            dataset=dataset,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "scientificName": self.scientific_name,
            "decimalLatitude": self.lat,
            "decimalLongitude": self.lng,
            "distance": format_distance(self.distance_m),
            "distanceMeters": self.distance_m,
            "eventDate": self.event_date,
            "recordedBy": self.recorded_by,
            "basisOfRecord": self.basis_of_record,
            "country": self.country,
            "datasetKey": self.dataset_key,
            "datasetTitle": self.dataset.title,
            "publisher": self.dataset.publisher,
            "gbifUrl": f"https://www.gbif.org/occurrence/{self.key}" if self.key else None,
        }


@dataclass
class Investigation:
    """One area search; ``occurrences`` grows while results stream in."""

    generation: int
    point: GeoPoint
    radius_m: float
    species: SpeciesRef
    bbox: BoundingBox
    status: str = "loading"
    occurrences: List[Occurrence] = field(default_factory=list)
    message: str = ""

    def to_json(self) -> Dict[str, Any]:
        return {
            "point": [self.point.lat, self.point.lng],
            "radius": self.radius_m,
            "species": self.species.to_json(),
            "bbox": self.bbox.to_json(),
            "status": self.status,
            "message": self.message,
            "occurrences": [occurrence.to_json() for occurrence in self.occurrences],
        }


class AreaInvestigator:
    """
    Run one area investigation at a time.

    Each investigation carries a generation number. Cancelling bumps the
    generation, and a search whose generation is no longer current drops
    whatever it fetches instead of publishing it.
    """

    def __init__(self, client: OccurrenceSearch, limit: int = DEFAULT_LIMIT) -> None:
        self._client = client
        self._limit = limit
        self._generation = 0
        self._current: Optional[Investigation] = None
        self._in_flight = False

    @property
    def current(self) -> Optional[Investigation]:
        return self._current

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def begin(self, point: GeoPoint, species: SpeciesRef, radius_m: float) -> Investigation:
        if self._in_flight:
            raise InvestigationInProgress("Investigation already in progress...")
        self._generation += 1
        self._in_flight = True
        self._current = Investigation(
            generation=self._generation,
            point=point,
            radius_m=radius_m,
            species=species,
            bbox=bbox_around(point.lat, point.lng, radius_m),
        )
        return self._current

    def cancel(self) -> None:
        self._generation += 1
        self._in_flight = False
        if self._current is not None and self._current.status == "loading":
            self._current.status = "cancelled"

    def close(self) -> None:
        """Close the results panel."""
        self.cancel()
        self._current = None

    async def run(self, generation: int) -> Investigation:
        """
        Search the area of the investigation ``generation`` and stream its results.

        The in-flight flag is always released for the current generation, even
        when the search raises; an unexpected error still marks the
        investigation failed before propagating.
        """
        investigation = self._current
        if investigation is None or investigation.generation != generation:
            raise InvestigationInProgress(f"Investigation {generation} is no longer active")

        try:
            return await self._search(investigation, generation)
        except Exception:
            if self.is_current(generation):
                self._fail(investigation)
            raise
        finally:
            if self.is_current(generation):
                self._in_flight = False

    async def _search(self, investigation: Investigation, generation: int) -> Investigation:
        species = investigation.species
        try:
            records = await self._client.search_occurrences(species.key, investigation.bbox, self._limit)
        except OccurrenceSearchError as exc:
            if self.is_current(generation):
                self._fail(investigation)
            logger.warning(f"Area investigation {generation} failed: {exc}")
            return investigation

        if not self.is_current(generation):
            logger.debug(f"Discarding results of stale investigation {generation}")
            return investigation

        if not records:
            investigation.status = "empty"
            investigation.message = (
                f"No occurrences found for {species.name or species.key} "
                f"within {investigation.radius_m / 1000:g}km of this location"
            )
            return investigation

        for record in records:
            dataset = await self._client.get_dataset(record.get("datasetKey"))
            if not self.is_current(generation):
                logger.debug(f"Investigation {generation} cancelled while streaming results")
                return investigation
            investigation.occurrences.append(Occurrence.from_gbif(record, dataset, investigation.point))

        investigation.status = "done"
        count = len(investigation.occurrences)
        investigation.message = f"Found {count} occurrence{'s' if count != 1 else ''} of {species.name or species.key}"
        return investigation

    @staticmethod
    def _fail(investigation: Investigation) -> None:
        investigation.status = "failed"
        investigation.occurrences = []
        investigation.message = "Failed to search for occurrences in this area"
