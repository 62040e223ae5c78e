"""OTA endpoints - firmware upload, download and management."""

import logging
from typing import Optional

from aiohttp import BodyPartReader, web

from climadash.firmware.registry import FirmwareUpload
from climadash.firmware.versions import needs_update
from climadash.shared.exceptions import InvalidFormat, NotFound
from climadash.shared.executor import run_blocking

from .keys import CONFIG_KEY, INGEST_KEY, REGISTRY_KEY

logger = logging.getLogger(__name__)

MAX_VERSION_FIELD = 64

routes = web.RouteTableDef()


async def _read_version(part: BodyPartReader) -> Optional[str]:
    """Read the ``version`` form field, refusing anything longer than a version."""
    data = bytearray()
    while True:
        chunk = await part.read_chunk(MAX_VERSION_FIELD + 1)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > MAX_VERSION_FIELD:
            raise InvalidFormat(f"Version must be at most {MAX_VERSION_FIELD} characters")
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise InvalidFormat("Version must be UTF-8 text") from e
    return text or None


@routes.post("/api/ota/upload")
async def upload_firmware(request: web.Request) -> web.Response:
    """Accept a multipart upload with a ``firmware`` file and ``version`` field.

    The file is streamed to disk chunk by chunk, off the event loop, and
    rejected as soon as it passes the size ceiling.
    """
    registry = request.app[REGISTRY_KEY]

    if not request.content_type.startswith("multipart/"):
        return web.json_response(
            {"success": False, "message": "No firmware file provided"}, status=400
        )

    upload: Optional[FirmwareUpload] = None
    version: Optional[str] = None
    reader = await request.multipart()
    try:
        async for part in reader:
            if part.name == "firmware" and upload is None:
                upload = await run_blocking(registry.begin_upload, part.filename or "", None)
                while True:
                    chunk = await part.read_chunk()
                    if not chunk:
                        break
                    await run_blocking(upload.write, chunk)
            elif part.name == "version":
                version = await _read_version(part)

        if upload is None:
            return web.json_response(
                {"success": False, "message": "No firmware file provided"}, status=400
            )

        upload.declared_version = version
        artifact = await run_blocking(upload.commit)
    finally:
        # No-op once committed
        if upload is not None:
            await run_blocking(upload.abort)

    return web.json_response({
        "success": True,
        "message": "Firmware uploaded successfully",
        "firmware": artifact.to_dict(),
    })


@routes.get("/api/ota/firmware")
async def download_firmware(request: web.Request) -> web.StreamResponse:
    """Serve the current firmware. HEAD returns the same headers without a body.

    The device polls with HEAD and compares ``X-Firmware-Version`` and
    ``X-Firmware-MD5`` before pulling the binary with GET.
    """
    artifact, path = await run_blocking(request.app[REGISTRY_KEY].open_current)

    headers = {
        "Content-Type": "application/octet-stream",
        "Content-Disposition": f'attachment; filename="{artifact.filename}"',
        "X-Firmware-Version": artifact.version or "unknown",
        "X-Firmware-MD5": artifact.checksum,
        "X-Firmware-Size": str(artifact.size_bytes),
        "X-Firmware-Filename": artifact.filename,
    }

    if request.method == "HEAD":
        logger.info(f"OTA check: serving metadata for {artifact.filename} ({artifact.version})")
    else:
        logger.info(f"OTA download: {artifact.filename} ({artifact.size_bytes} bytes)")

    return web.FileResponse(path, headers=headers)


@routes.get("/api/ota/info")
async def firmware_info(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    reading = request.app[INGEST_KEY].current
    artifact = await run_blocking(request.app[REGISTRY_KEY].current)

    current_version = reading.device_version if reading else config.device.default_version
    advice = needs_update(current_version, artifact)

    return web.json_response({
        "success": True,
        "firmware": artifact.to_dict(),
        "currentVersion": current_version,
        "changelog": config.firmware.changelog,
        "updateAvailable": advice.needed,
    })


@routes.post("/api/ota/force-update")
async def force_update(request: web.Request) -> web.Response:
    """Record a dashboard request to update. The device still pulls on its own."""
    try:
        artifact = await run_blocking(request.app[REGISTRY_KEY].request_update)
    except NotFound:
        return web.json_response(
            {"success": False, "message": "No firmware available to update to"}, status=400
        )

    return web.json_response({
        "success": True,
        "message": "Forced update started",
        "firmware": artifact.to_dict(),
    })


@routes.delete("/api/ota/firmware")
async def delete_firmware(request: web.Request) -> web.Response:
    removed = await run_blocking(request.app[REGISTRY_KEY].delete)
    return web.json_response({
        "success": True,
        "message": "Firmware deleted successfully",
        "removed": removed,
    })
