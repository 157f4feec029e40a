"""Flask application exposing RP endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from .challenges import ChallengeStore
from .config import RPSettings
from .database import Database
from .errors import NOT_FOUND_KINDS, VerificationError
from .registry import CredentialRegistry
from .schemas import (
    AuthenticateOptionsRequest,
    RegisterOptionsRequest,
    RenameCredentialRequest,
    RPResponse,
    VerifyRequest,
)
from .service import RelyingPartyService

LOGGER = logging.getLogger(__name__)


def build_service(settings: RPSettings, db: Database) -> RelyingPartyService:
    challenges = ChallengeStore(
        ttl_seconds=settings.challenge_ttl_seconds,
        size=settings.challenge_size,
        max_entries=settings.max_pending_challenges,
    )
    return RelyingPartyService(settings, challenges, CredentialRegistry(db))


def create_app(
    settings: Optional[RPSettings] = None,
    service: Optional[RelyingPartyService] = None,
) -> Flask:
    settings = settings or RPSettings()
    if service is None:
        db = Database(settings)
        db.create_all()
        service = build_service(settings, db)

    app = Flask(__name__)
    app.extensions["rp_service"] = service
    CORS(app)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    def ok(data: Optional[dict] = None):
        return jsonify(RPResponse(success=True, data=data).model_dump())

    @app.post("/register/options")
    def register_options():
        payload = RegisterOptionsRequest.model_validate(request.get_json(silent=True) or {})
        options = service.start_registration(
            payload.user_handle, payload.display_name, username=payload.username
        )
        return ok(options.model_dump(exclude_none=True))

    @app.post("/register/verify")
    def register_verify():
        payload = VerifyRequest.model_validate(request.get_json(silent=True) or {})
        record = service.finish_registration(
            payload.session_token, payload.credential, label=payload.label
        )
        return ok(record.summary())

    @app.post("/authenticate/options")
    def authenticate_options():
        payload = AuthenticateOptionsRequest.model_validate(request.get_json(silent=True) or {})
        options = service.start_authentication(payload.user_handle, username=payload.username)
        return ok(options.model_dump(exclude_none=True))

    @app.post("/authenticate/verify")
    def authenticate_verify():
        payload = VerifyRequest.model_validate(request.get_json(silent=True) or {})
        user_handle = service.finish_authentication(payload.session_token, payload.credential)
        return ok({"user_handle": user_handle})

    @app.get("/users/<user_handle>/credentials")
    def user_credentials(user_handle: str):
        records = service.list_credentials(user_handle)
        return ok({"credentials": [record.summary() for record in records]})

    @app.delete("/credentials/<credential_id>")
    def remove_credential(credential_id: str):
        return ok({"removed": service.remove_credential(credential_id)})

    @app.patch("/credentials/<credential_id>")
    def rename_credential(credential_id: str):
        payload = RenameCredentialRequest.model_validate(request.get_json(silent=True) or {})
        return ok(service.rename_credential(credential_id, payload.label).summary())

    @app.errorhandler(VerificationError)
    def handle_verification_error(error: VerificationError):
        status = 404 if error.kind in NOT_FOUND_KINDS else 400
        return jsonify(RPResponse(success=False, error=error.kind.value).model_dump()), status

    @app.errorhandler(ValidationError)
    def handle_invalid_request(error: ValidationError):
        LOGGER.info("Rejected request body: %d validation errors", error.error_count())
        return jsonify(RPResponse(success=False, error="MalformedRequest").model_dump()), 400

    @app.errorhandler(400)
    def handle_bad_request(error):
        return jsonify(RPResponse(success=False, error="BadRequest").model_dump()), 400

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
