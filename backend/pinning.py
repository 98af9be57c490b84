import json
import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_PINATA_API_URL = "https://api.pinata.cloud"
PLACEHOLDER_IMAGE_URL = "/placeholder.svg"
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
REQUEST_TIMEOUT_SECONDS = 60


class PinningError(RuntimeError):
    pass


@dataclass
class PinnedFile:
    cid: str
    name: str
    url: str


class PinataClient:
    """Uploads product and carousel images to Pinata and builds gateway URLs."""

    def __init__(self, jwt: str, gateway: str = "", api_url: str = DEFAULT_PINATA_API_URL):
        self.jwt = (jwt or "").strip()
        self.gateway = (gateway or "").strip().rstrip("/")
        self.api_url = (api_url or DEFAULT_PINATA_API_URL).rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.jwt)

    def _headers(self):
        return {"Authorization": f"Bearer {self.jwt}"}

    def gateway_url(self, cid: Optional[str]) -> str:
        if not cid:
            return PLACEHOLDER_IMAGE_URL
        gateway = self.gateway
        for scheme in ("https://", "http://"):
            if gateway.startswith(scheme):
                gateway = gateway[len(scheme):]
        return f"https://{gateway}/ipfs/{cid}"

    def pin_file(
        self,
        stream,
        filename: str,
        content_type: str,
        group_id: Optional[str] = None,
    ) -> PinnedFile:
        if not self.configured:
            raise PinningError("Image uploads are not configured. Set PINATA_JWT.")
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ValueError(
                "File type not allowed. Only JPEG, PNG, WebP, and GIF are supported."
            )

        data = {"pinataMetadata": json.dumps({"name": filename})}
        if group_id:
            data["pinataOptions"] = json.dumps({"groupId": group_id})

        try:
            response = requests.post(
                f"{self.api_url}/pinning/pinFileToIPFS",
                files={"file": (filename, stream, content_type)},
                data=data,
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise PinningError(f"Upload to Pinata failed: {exc}") from exc

        cid = str(payload.get("IpfsHash") or "").strip()
        if not cid:
            raise PinningError("Pinata did not return a content id.")
        return PinnedFile(cid=cid, name=filename, url=self.gateway_url(cid))

    def unpin(self, cid: Optional[str]) -> bool:
        clean_cid = str(cid or "").strip().split("?")[0]
        if not clean_cid or not self.configured:
            return False
        try:
            response = requests.delete(
                f"{self.api_url}/pinning/unpin/{clean_cid}",
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.warning("Unable to unpin %s: %s", clean_cid, exc)
            return False
        if not response.ok:
            logger.warning(
                "Pinata refused to unpin %s: %s %s",
                clean_cid,
                response.status_code,
                response.text,
            )
            return False
        logger.info("Unpinned %s from Pinata", clean_cid)
        return True
