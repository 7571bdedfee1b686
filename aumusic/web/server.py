"""
FastAPI web server for aumusic.

Provides the HTTP API for accounts, uploads, track streaming and playlists.
"""

import logging
import mimetypes
import uuid
from email.utils import format_datetime
from typing import Optional

from fastapi import Depends, FastAPI, Form, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException

from ..config_manager import Settings
from ..credentials import CredentialCodec
from ..errors import (
    AumusicError,
    Denied,
    InvalidCredential,
    NotFound,
    UploadTooLarge,
    ValidationFailed,
)
from ..ingest import IngestionPipeline, UploadedFile
from ..library import TrackLibrary
from ..models import Claims
from ..playlists import PlaylistManager
from ..user import UserManager
from .ranges import RangeNotSatisfiable, iter_file, parse_range

logger = logging.getLogger(__name__)

TOKEN_COOKIE = "token"
DEFAULT_CONTENT_TYPE = "audio/mpeg"
BODY_TRUNCATED = "aumusic.body_truncated"  # Scope key set by BodySizeLimitMiddleware


# Request models
class PlaylistRequest(BaseModel):
    name: str


class BodySizeLimitMiddleware:
    """
    Cut off the request body for the given path once it exceeds max_bytes.

    Counts the bytes actually received, so it also covers chunked uploads
    that declare no Content-Length. Instead of raising mid-stream, the body
    is ended early and the request is flagged in its scope; the endpoint
    then closes whatever the form parser built and answers 413.
    """

    def __init__(self, app, max_bytes: int, path: str = "/upload"):
        self.app = app
        self.max_bytes = max_bytes
        self.path = path

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["path"] != self.path:
            await self.app(scope, receive, send)
            return

        received = 0
        truncated = False

        async def limited_receive():
            nonlocal received, truncated
            if truncated:
                # Drop the rest of the body; pass through disconnects
                while True:
                    message = await receive()
                    if message["type"] != "http.request":
                        return message

            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    truncated = True
                    scope[BODY_TRUNCATED] = True
                    logger.info("Request body for %s exceeded %d bytes", self.path, self.max_bytes)
                    return {"type": "http.request", "body": b"", "more_body": False}
            return message

        await self.app(scope, limited_receive, send)


# Dependency to get components
def get_settings(request: Request) -> Settings:
    """Get Settings from app state."""
    return request.app.state.settings


def get_codec(request: Request) -> CredentialCodec:
    """Get CredentialCodec from app state."""
    return request.app.state.codec


def get_user_manager(request: Request) -> UserManager:
    """Get UserManager from app state."""
    return request.app.state.user_manager


def get_ingestion_pipeline(request: Request) -> IngestionPipeline:
    """Get IngestionPipeline from app state."""
    return request.app.state.ingestion_pipeline


def get_track_library(request: Request) -> TrackLibrary:
    """Get TrackLibrary from app state."""
    return request.app.state.track_library


def get_playlist_manager(request: Request) -> PlaylistManager:
    """Get PlaylistManager from app state."""
    return request.app.state.playlist_manager


def get_token(request: Request) -> Optional[str]:
    """
    Read the bearer token from the Authorization header, falling back to the
    token cookie set at login.
    """
    auth = request.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(TOKEN_COOKIE)


def get_claims(
    token: Optional[str] = Depends(get_token),
    codec: CredentialCodec = Depends(get_codec),
) -> Claims:
    """Resolve the request's credential to an identity (401 on failure)."""
    return codec.decode(token)


def too_large(settings: Settings) -> UploadTooLarge:
    return UploadTooLarge(f"upload exceeds maximum size of {settings.max_upload_bytes} bytes")


def error_response(exc: AumusicError) -> JSONResponse:
    """Map an aumusic error to an HTTP response without leaking internals."""
    if isinstance(exc, InvalidCredential):
        return JSONResponse(status_code=401, content={"detail": "Authentication required"})
    if isinstance(exc, (Denied, NotFound)):
        # Non-owners get the same answer as for a missing record
        return JSONResponse(status_code=404, content={"detail": "Not found"})
    if isinstance(exc, UploadTooLarge):
        return JSONResponse(status_code=413, content={"detail": str(exc)})
    if isinstance(exc, ValidationFailed):
        return JSONResponse(status_code=400, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def track_summary_dict(summary) -> dict:
    return {
        "id": summary.id,
        "name": summary.name,
        "artist": summary.artist,
        "album": summary.album,
        "size": summary.size,
        "mod_time": summary.mod_time.isoformat() if summary.mod_time else None,
    }


def playlist_dict(playlist) -> dict:
    return {"id": playlist.id, "name": playlist.name}


def create_app(
    settings: Settings,
    codec: CredentialCodec,
    user_manager: UserManager,
    ingestion_pipeline: IngestionPipeline,
    track_library: TrackLibrary,
    playlist_manager: PlaylistManager,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Read-only configuration snapshot
        codec: CredentialCodec used to resolve request credentials
        user_manager: UserManager instance
        ingestion_pipeline: IngestionPipeline instance
        track_library: TrackLibrary instance
        playlist_manager: PlaylistManager instance

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="aumusic", version="1.0.0")

    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_upload_bytes)

    # Store components in app state
    app.state.settings = settings
    app.state.codec = codec
    app.state.user_manager = user_manager
    app.state.ingestion_pipeline = ingestion_pipeline
    app.state.track_library = track_library
    app.state.playlist_manager = playlist_manager

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = uuid.uuid4().hex
        logger.info("request %s %s %s", request_id, request.method, request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(AumusicError)
    async def handle_aumusic_error(request: Request, exc: AumusicError):
        if isinstance(exc, (InvalidCredential, Denied, NotFound, ValidationFailed)):
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        else:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc,
                exc_info=exc,
            )
        return error_response(exc)

    # Account endpoints
    @app.post("/register")
    def register(
        username: str = Form(""),
        email: str = Form(""),
        password: str = Form(""),
        user_mgr: UserManager = Depends(get_user_manager),
    ):
        """Register a new user."""
        user = user_mgr.register(username, email, password)
        return {"id": user.id, "name": user.name, "email": user.email}

    @app.post("/login")
    def login(
        response: Response,
        username: str = Form(""),
        password: str = Form(""),
        user_mgr: UserManager = Depends(get_user_manager),
    ):
        """Check credentials and hand back a token (also set as an HttpOnly cookie)."""
        token = user_mgr.login(username, password)
        response.set_cookie(TOKEN_COOKIE, token, path="/", httponly=True, samesite="lax")
        return {"token": token}

    @app.post("/logout")
    async def logout(response: Response):
        """Clear the token cookie. Tokens are not revoked server-side."""
        response.delete_cookie(TOKEN_COOKIE, path="/")
        return {"status": "logged_out"}

    # Upload endpoint
    @app.post("/upload")
    async def upload(
        request: Request,
        claims: Claims = Depends(get_claims),
        pipeline: IngestionPipeline = Depends(get_ingestion_pipeline),
        app_settings: Settings = Depends(get_settings),
    ):
        """
        Upload one or more files for an artist/album.

        Form fields: artist, album, files (repeated). The response lists the
        outcome of every file; files stored before a failure stay stored.
        """
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > app_settings.max_upload_bytes:
            raise too_large(app_settings)

        try:
            form = await request.form()
        except HTTPException:
            # A cut-off body can leave the multipart stream unparseable
            if request.scope.get(BODY_TRUNCATED):
                raise too_large(app_settings)
            raise
        try:
            if request.scope.get(BODY_TRUNCATED):
                raise too_large(app_settings)
            artist = form.get("artist")
            album = form.get("album")
            uploads = [
                UploadedFile(filename=item.filename or "", stream=item.file, declared_size=item.size)
                for item in form.getlist("files")
                if isinstance(item, UploadFile)
            ]
            report = await run_in_threadpool(
                pipeline.ingest,
                claims,
                artist if isinstance(artist, str) else None,
                album if isinstance(album, str) else None,
                uploads,
            )
        finally:
            await form.close()

        results = []
        for result in report.results:
            entry = {
                "filename": result.filename,
                "ok": result.ok,
                "track_id": result.track_id,
                "size": result.size,
                "error": result.error,
            }
            if result.ok:
                entry["message"] = f"Successfully uploaded {result.filename} ({result.size} bytes)"
            results.append(entry)
        return {"results": results, "count": report.count}

    # Track endpoints
    @app.get("/tracks")
    def list_tracks(
        owner: str = "me",
        token: Optional[str] = Depends(get_token),
        library: TrackLibrary = Depends(get_track_library),
    ):
        """List the caller's own tracks in upload order."""
        if owner != "me":
            raise ValidationFailed("only owner=me is supported")
        return [track_summary_dict(summary) for summary in library.list(token)]

    @app.get("/tracks/{track_id}")
    def stream_track(
        track_id: int,
        request: Request,
        token: Optional[str] = Depends(get_token),
        library: TrackLibrary = Depends(get_track_library),
    ):
        """Stream a track, honouring a single byte range for seeking."""
        opened = library.fetch(token, track_id)
        size = opened.size

        try:
            byte_range = parse_range(request.headers.get("range"), size)
        except RangeNotSatisfiable:
            opened.close()
            return Response(
                status_code=416,
                headers={"Content-Range": f"bytes */{size}", "Accept-Ranges": "bytes"},
            )

        headers = {
            "Accept-Ranges": "bytes",
            "Last-Modified": format_datetime(opened.last_modified, usegmt=True),
        }
        if byte_range is None:
            start, length, status_code = 0, size, 200
        else:
            start, end = byte_range
            length = end - start + 1
            status_code = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"
        headers["Content-Length"] = str(length)

        media_type = mimetypes.guess_type(opened.track.name)[0] or DEFAULT_CONTENT_TYPE
        return StreamingResponse(
            iter_file(opened.stream, start, length),
            status_code=status_code,
            headers=headers,
            media_type=media_type,
        )

    @app.delete("/tracks/{track_id}")
    def delete_track(
        track_id: int,
        token: Optional[str] = Depends(get_token),
        library: TrackLibrary = Depends(get_track_library),
    ):
        """Delete one of the caller's tracks (file first, then record)."""
        library.delete(token, track_id)
        return {"status": "deleted"}

    # Playlist endpoints
    @app.post("/playlists")
    def create_playlist(
        request_data: PlaylistRequest,
        claims: Claims = Depends(get_claims),
        playlists: PlaylistManager = Depends(get_playlist_manager),
    ):
        """Create a playlist."""
        return playlist_dict(playlists.create(claims, request_data.name))

    @app.get("/playlists")
    def list_playlists(
        claims: Claims = Depends(get_claims),
        playlists: PlaylistManager = Depends(get_playlist_manager),
    ):
        """List the caller's playlists."""
        return [playlist_dict(p) for p in playlists.list(claims)]

    @app.get("/playlists/{playlist_id}/tracks")
    def playlist_tracks(
        playlist_id: int,
        claims: Claims = Depends(get_claims),
        playlists: PlaylistManager = Depends(get_playlist_manager),
    ):
        """List tracks in one of the caller's playlists."""
        return [track_summary_dict(s) for s in playlists.tracks_of(claims, playlist_id)]

    @app.put("/playlists/{playlist_id}/tracks/{track_id}")
    def add_playlist_track(
        playlist_id: int,
        track_id: int,
        claims: Claims = Depends(get_claims),
        playlists: PlaylistManager = Depends(get_playlist_manager),
    ):
        """Add one of the caller's tracks to a playlist."""
        added = playlists.add_track(claims, playlist_id, track_id)
        return {"status": "added" if added else "already_present"}

    @app.delete("/playlists/{playlist_id}/tracks/{track_id}")
    def remove_playlist_track(
        playlist_id: int,
        track_id: int,
        claims: Claims = Depends(get_claims),
        playlists: PlaylistManager = Depends(get_playlist_manager),
    ):
        """Remove a track from a playlist."""
        playlists.remove_track(claims, playlist_id, track_id)
        return {"status": "removed"}

    return app
