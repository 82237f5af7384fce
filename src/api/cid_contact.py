"""
cid.contact Indexer Client

Classifies mismatched paths by where the indexer says their root CID is
provided from. Used after a round to tell "content is only on a known
pinning service" apart from genuine retrieval bugs.
"""

from typing import Dict, Iterable, Optional

import requests

from src.errors import ResolveError
from src.resolver.url_builder import parse_cid_from_path
from src.utils.logger import get_logger, truncate_snippet

logger = get_logger(__name__)

NOT_FOUND = "not_found"
DAG_HOUSE = "dag_house"
PINATA = "pinata"
OTHERS = "others"
LOOKUP_FAILED = "lookup_failed"

CATEGORIES = (NOT_FOUND, DAG_HOUSE, PINATA, OTHERS, LOOKUP_FAILED)


class CidContactChecker:
    """
    Looks up CIDs on the cid.contact indexer and tallies provider classes.

    Each CID gets a single lookup; transport failures and unparsable paths
    are counted as lookup_failed instead of being retried.
    """

    BASE_URL = "https://cid.contact"
    DAG_HOUSE_MARKERS = ("dag.w3s", "dag.house")
    PINATA_MARKERS = ("pinata.cloud",)

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 180.0,
        base_url: Optional[str] = None,
    ):
        """
        Initialize indexer client.

        Args:
            session: Optional requests.Session (a fresh one if omitted)
            timeout: Per-lookup timeout in seconds
            base_url: Indexer base URL override
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def classify_cid(self, cid: str) -> str:
        """
        Return the provider category of one CID.

        Args:
            cid: Root CID to look up

        Returns:
            One of CATEGORIES
        """
        url = f"{self.base_url}/cid/{cid}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(
                f"cid.contact lookup failed for {cid}",
                operation="cid_contact_lookup",
                error=str(e),
            )
            return LOOKUP_FAILED

        if response.status_code == 404:
            return NOT_FOUND
        if response.status_code != 200:
            logger.warning(
                f"cid.contact returned {response.status_code} for {cid}",
                operation="cid_contact_lookup",
                error=truncate_snippet(response.text),
            )
            return LOOKUP_FAILED

        body = response.text
        if any(marker in body for marker in self.DAG_HOUSE_MARKERS):
            return DAG_HOUSE
        if any(marker in body for marker in self.PINATA_MARKERS):
            return PINATA
        return OTHERS

    def classify_paths(self, paths: Iterable[str]) -> Dict[str, int]:
        """
        Tally provider categories across mismatched paths.

        Args:
            paths: Logical request paths (/ipfs/<cid>...)

        Returns:
            Count per category; every category key is present
        """
        tally = {category: 0 for category in CATEGORIES}
        for path in paths:
            try:
                cid = parse_cid_from_path(path)
            except ResolveError as e:
                logger.warning(
                    f"Cannot extract CID from {path}",
                    operation="cid_contact_lookup",
                    error=str(e),
                )
                tally[LOOKUP_FAILED] += 1
                continue
            tally[self.classify_cid(cid)] += 1

        logger.info(
            "cid.contact summary of mismatches",
            operation="cid_contact_summary",
            context=tally,
        )
        return tally
