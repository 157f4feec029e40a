from __future__ import annotations

import json
import logging
import threading

import pytest

from authenticator import Authenticator, AuthenticatorSettings
from rp_server.assertion import encode_user_handle
from rp_server.errors import ErrorKind, VerificationError
from rp_server.service import Flow, FlowState
from rp_server.webauthn import b64url_decode, b64url_encode

RP_ID = "example.com"
ORIGIN = "https://example.com"


def options_dict(options) -> dict:
    return options.model_dump(exclude_none=True)


def rewrite_client_data(credential: dict, **changes) -> dict:
    response = credential["response"]
    client_data = json.loads(b64url_decode(response["clientDataJSON"]))
    client_data.update(changes)
    response["clientDataJSON"] = b64url_encode(json.dumps(client_data).encode("utf-8"))
    return credential


def expect_error(kind: ErrorKind, func, *args, **kwargs) -> VerificationError:
    with pytest.raises(VerificationError) as excinfo:
        func(*args, **kwargs)
    assert excinfo.value.kind is kind
    return excinfo.value


# Registration ----------------------------------------------------------


def test_start_registration_options(service):
    options = service.start_registration(None, "Test User", username="user@example.com")
    data = options_dict(options)
    assert data["rp"] == {"id": RP_ID, "name": "Example RP"}
    assert data["user"]["name"] == "user@example.com"
    assert data["user"]["displayName"] == "Test User"
    assert [param["alg"] for param in data["pubKeyCredParams"]] == [-7, -257, -8]
    assert data["authenticatorSelection"]["residentKey"] == "required"
    assert data["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert len(b64url_decode(data["challenge"])) == 32
    assert data["excludeCredentials"] == []
    assert data["session_token"]


def test_registration_round_trip(service, registry, registered):
    found = registry.find(registered.credential_id)
    assert found is not None
    assert found.algorithm == -7
    assert found.sign_count == 0
    assert found.transports == ["internal"]
    user = registry.find_user_by_name("user@example.com")
    assert user.display_name == "Test User"
    assert user.user_handle == registered.user_handle
    assert service.list_credentials(user.user_handle)[0].credential_id == registered.credential_id


def test_second_registration_reuses_user_and_excludes_existing(service, registered):
    options = service.start_registration(None, "Test User", username="user@example.com")
    data = options_dict(options)
    assert data["user"]["id"] == encode_user_handle(registered.user_handle)
    assert [cred["id"] for cred in data["excludeCredentials"]] == [registered.credential_id]

    second = Authenticator(AuthenticatorSettings(origin=ORIGIN))
    record = service.finish_registration(
        options.session_token, second.make_credential(data), label="Backup key"
    )
    assert record.user_handle == registered.user_handle
    assert record.label == "Backup key"
    assert len(service.list_credentials(registered.user_handle)) == 2


@pytest.mark.parametrize("alg", [-257, -8])
def test_registration_with_other_algorithms(service, authenticator, alg):
    options = options_dict(service.start_registration("handle-1", "Someone"))
    options["pubKeyCredParams"] = [{"type": "public-key", "alg": alg}]
    record = service.finish_registration(
        options["session_token"], authenticator.make_credential(options)
    )
    assert record.algorithm == alg


def test_registration_packed_self_attestation(service):
    authenticator = Authenticator(AuthenticatorSettings(origin=ORIGIN, attestation_format="packed"))
    options = options_dict(service.start_registration(None, "Packed"))
    record = service.finish_registration(
        options["session_token"], authenticator.make_credential(options)
    )
    assert record.credential_id


def test_registration_origin_mismatch(service, registry, authenticator):
    options = options_dict(service.start_registration(None, "Test User"))
    credential = authenticator.make_credential(options, origin="https://evil.example")
    expect_error(
        ErrorKind.ORIGIN_MISMATCH, service.finish_registration, options["session_token"], credential
    )
    assert registry.find(credential["id"]) is None


def test_registration_type_mismatch(service, authenticator):
    options = options_dict(service.start_registration(None, "Test User"))
    credential = rewrite_client_data(authenticator.make_credential(options), type="webauthn.get")
    expect_error(ErrorKind.TYPE_MISMATCH, service.finish_registration, options["session_token"], credential)


def test_registration_challenge_mismatch(service, authenticator):
    options = options_dict(service.start_registration(None, "Test User"))
    credential = rewrite_client_data(
        authenticator.make_credential(options), challenge=b64url_encode(b"x" * 32)
    )
    expect_error(
        ErrorKind.CHALLENGE_MISMATCH, service.finish_registration, options["session_token"], credential
    )


def test_registration_rp_id_mismatch(service, authenticator):
    options = options_dict(service.start_registration(None, "Test User"))
    options["rp"]["id"] = "evil.example"
    credential = authenticator.make_credential(options)
    expect_error(
        ErrorKind.RP_ID_MISMATCH, service.finish_registration, options["session_token"], credential
    )


def test_registration_unsupported_algorithm(settings, challenges, registry, authenticator):
    from rp_server.service import RelyingPartyService

    strict = RelyingPartyService(
        settings.model_copy(update={"pub_key_cred_algorithms": [-257]}), challenges, registry
    )
    options = options_dict(strict.start_registration(None, "Test User"))
    options["pubKeyCredParams"] = [{"type": "public-key", "alg": -7}]
    credential = authenticator.make_credential(options)
    expect_error(
        ErrorKind.UNSUPPORTED_ALGORITHM, strict.finish_registration, options["session_token"], credential
    )


def test_registration_requires_user_verification_when_configured(
    settings, challenges, registry, authenticator
):
    from rp_server.service import RelyingPartyService

    strict = RelyingPartyService(
        settings.model_copy(update={"user_verification": "required"}), challenges, registry
    )
    options = options_dict(strict.start_registration(None, "Test User"))
    credential = authenticator.make_credential(options, user_verified=False)
    expect_error(
        ErrorKind.USER_NOT_VERIFIED, strict.finish_registration, options["session_token"], credential
    )


def test_registration_duplicate_credential(service, registry, authenticator):
    options = options_dict(service.start_registration("handle-1", "Test User"))
    credential = authenticator.make_credential(options)
    service.finish_registration(options["session_token"], credential)

    replay = options_dict(service.start_registration("handle-2", "Other User"))
    rewrite_client_data(credential, challenge=replay["challenge"])
    expect_error(
        ErrorKind.DUPLICATE_CREDENTIAL, service.finish_registration, replay["session_token"], credential
    )
    assert registry.find(credential["id"]).user_handle == "handle-1"


def test_registration_malformed_response(service):
    options = options_dict(service.start_registration(None, "Test User"))
    expect_error(
        ErrorKind.MALFORMED_CLIENT_DATA,
        service.finish_registration,
        options["session_token"],
        {"response": "nope"},
    )
    # The token was burnt by the failed attempt.
    expect_error(
        ErrorKind.CHALLENGE_NOT_FOUND,
        service.finish_registration,
        options["session_token"],
        {"response": "nope"},
    )


def test_registration_token_is_single_use(service, authenticator):
    options = options_dict(service.start_registration(None, "Test User"))
    credential = authenticator.make_credential(options)
    service.finish_registration(options["session_token"], credential)
    expect_error(
        ErrorKind.CHALLENGE_NOT_FOUND, service.finish_registration, options["session_token"], credential
    )


def test_registration_expired_challenge(service, authenticator, clock):
    options = options_dict(service.start_registration(None, "Test User"))
    credential = authenticator.make_credential(options)
    clock.advance(301)
    expect_error(
        ErrorKind.CHALLENGE_EXPIRED, service.finish_registration, options["session_token"], credential
    )


def test_pending_registrations_for_same_new_username(service, registry):
    first = options_dict(service.start_registration(None, "Alice", username="alice@example.com"))
    second = options_dict(service.start_registration(None, "Alice", username="alice@example.com"))
    assert first["user"]["id"] != second["user"]["id"]

    phone = Authenticator(AuthenticatorSettings(origin=ORIGIN))
    laptop = Authenticator(AuthenticatorSettings(origin=ORIGIN))
    record = service.finish_registration(first["session_token"], phone.make_credential(first))
    credential = laptop.make_credential(second)
    expect_error(
        ErrorKind.USER_MISMATCH, service.finish_registration, second["session_token"], credential
    )
    assert registry.find_user_by_name("alice@example.com").user_handle == record.user_handle
    assert registry.find(credential["id"]) is None


def test_explicit_handle_with_taken_username(service, registry, authenticator, registered):
    options = options_dict(service.start_registration("new-handle", "Intruder", username="user@example.com"))
    credential = authenticator.make_credential(options)
    expect_error(
        ErrorKind.USER_MISMATCH, service.finish_registration, options["session_token"], credential
    )
    assert registry.get_user("new-handle") is None
    assert registry.find_user_by_name("user@example.com").user_handle == registered.user_handle


def test_unexpected_failure_is_logged_and_burns_token(service, authenticator, monkeypatch, caplog):
    def broken(*args, **kwargs):
        raise RuntimeError("registry offline")

    monkeypatch.setattr(service.attestation, "verify", broken)
    options = options_dict(service.start_registration(None, "Test User"))
    credential = authenticator.make_credential(options)
    with caplog.at_level(logging.INFO):
        with pytest.raises(RuntimeError):
            service.finish_registration(options["session_token"], credential)
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert errors and "Registration Errored" in errors[0].getMessage()
    assert "RuntimeError" in errors[0].getMessage()

    monkeypatch.undo()
    expect_error(
        ErrorKind.CHALLENGE_NOT_FOUND, service.finish_registration, options["session_token"], credential
    )


def test_rename_credential(service, registered):
    renamed = service.rename_credential(registered.credential_id, "Work phone")
    assert renamed.label == "Work phone"
    assert service.list_credentials(registered.user_handle)[0].label == "Work phone"
    expect_error(ErrorKind.UNKNOWN_CREDENTIAL, service.rename_credential, "missing", "x")


# Authentication --------------------------------------------------------


def test_authentication_round_trip(service, registry, authenticator, registered):
    options = options_dict(service.start_authentication(registered.user_handle))
    assert options["rpId"] == RP_ID
    assert [cred["id"] for cred in options["allowCredentials"]] == [registered.credential_id]

    credential = authenticator.get_assertion(options)
    assert service.finish_authentication(options["session_token"], credential) == registered.user_handle
    assert registry.find(registered.credential_id).sign_count == 1


def test_authentication_without_user_handle(service, authenticator, registered):
    options = options_dict(service.start_authentication())
    assert options["allowCredentials"] == []
    credential = authenticator.get_assertion(options)
    assert service.finish_authentication(options["session_token"], credential) == registered.user_handle


def test_authentication_by_username(service, authenticator, registered):
    options = options_dict(service.start_authentication(username="user@example.com"))
    assert [cred["id"] for cred in options["allowCredentials"]] == [registered.credential_id]
    unknown = options_dict(service.start_authentication(username="nobody@example.com"))
    assert unknown["allowCredentials"] == []


def test_authentication_unknown_credential(service, authenticator, registered):
    options = options_dict(service.start_authentication())
    credential = authenticator.get_assertion(options)
    service.remove_credential(registered.credential_id)
    expect_error(
        ErrorKind.UNKNOWN_CREDENTIAL, service.finish_authentication, options["session_token"], credential
    )


def test_authentication_signature_invalid(service, registry, authenticator, registered, caplog):
    options = options_dict(service.start_authentication(registered.user_handle))
    credential = authenticator.get_assertion(options)
    signature = bytearray(b64url_decode(credential["response"]["signature"]))
    signature[-1] ^= 0xFF
    credential["response"]["signature"] = b64url_encode(bytes(signature))

    with caplog.at_level(logging.INFO):
        expect_error(
            ErrorKind.SIGNATURE_INVALID,
            service.finish_authentication,
            options["session_token"],
            credential,
        )
    security = [r for r in caplog.records if r.name == "rp_server.security"]
    assert security and security[0].levelno == logging.ERROR
    assert "SignatureInvalid" in security[0].getMessage()
    assert registry.find(registered.credential_id).sign_count == 0


def test_authentication_origin_mismatch(service, authenticator, registered):
    options = options_dict(service.start_authentication(registered.user_handle))
    credential = authenticator.get_assertion(options, origin="https://evil.example")
    expect_error(
        ErrorKind.ORIGIN_MISMATCH, service.finish_authentication, options["session_token"], credential
    )


def test_authentication_with_registration_token(service, authenticator, registered):
    options = options_dict(service.start_registration(None, "Someone"))
    options["rpId"] = RP_ID
    options["allowCredentials"] = [{"id": registered.credential_id, "type": "public-key"}]
    credential = authenticator.get_assertion(options)
    expect_error(
        ErrorKind.CHALLENGE_NOT_FOUND, service.finish_authentication, options["session_token"], credential
    )


def test_authentication_user_handle_mismatch(service, authenticator, registered):
    options = options_dict(service.start_authentication(registered.user_handle))
    credential = authenticator.get_assertion(options)
    credential["response"]["userHandle"] = encode_user_handle("someone-else")
    expect_error(
        ErrorKind.USER_MISMATCH, service.finish_authentication, options["session_token"], credential
    )


def test_authentication_for_other_user(service, authenticator, registered):
    options = options_dict(service.start_authentication("other-user"))
    options["allowCredentials"] = [{"id": registered.credential_id, "type": "public-key"}]
    credential = authenticator.get_assertion(options)
    expect_error(
        ErrorKind.USER_MISMATCH, service.finish_authentication, options["session_token"], credential
    )


def test_authentication_counter_rollback(service, registry, authenticator, registered, caplog):
    options = options_dict(service.start_authentication(registered.user_handle))
    service.finish_authentication(options["session_token"], authenticator.get_assertion(options, sign_count=10))

    options = options_dict(service.start_authentication(registered.user_handle))
    cloned = authenticator.get_assertion(options, sign_count=5)
    with caplog.at_level(logging.INFO):
        expect_error(
            ErrorKind.COUNTER_ROLLBACK, service.finish_authentication, options["session_token"], cloned
        )
    assert any(r.name == "rp_server.security" for r in caplog.records)
    assert registry.find(registered.credential_id).sign_count == 10


def test_authentication_counterless_authenticator(service, registry):
    authenticator = Authenticator(AuthenticatorSettings(origin=ORIGIN, supports_counter=False))
    options = options_dict(service.start_registration(None, "No Counter"))
    record = service.finish_registration(options["session_token"], authenticator.make_credential(options))
    for _ in range(3):
        options = options_dict(service.start_authentication(record.user_handle))
        assert service.finish_authentication(
            options["session_token"], authenticator.get_assertion(options)
        ) == record.user_handle
    assert registry.find(record.credential_id).sign_count == 0


def test_expired_challenge_is_logged_as_benign(service, authenticator, registered, clock, caplog):
    options = options_dict(service.start_authentication(registered.user_handle))
    credential = authenticator.get_assertion(options)
    clock.advance(600)
    with caplog.at_level(logging.INFO):
        expect_error(
            ErrorKind.CHALLENGE_EXPIRED, service.finish_authentication, options["session_token"], credential
        )
    assert not any(r.name == "rp_server.security" for r in caplog.records)
    assert any(r.levelno == logging.WARNING and "ChallengeExpired" in r.getMessage() for r in caplog.records)


def _race(calls):
    barrier = threading.Barrier(len(calls))
    outcomes = []
    lock = threading.Lock()

    def worker(func):
        barrier.wait()
        try:
            result = func()
        except VerificationError as exc:
            result = exc.kind
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes


def test_concurrent_cloned_assertions_single_winner(service, registry, authenticator, registered):
    first = options_dict(service.start_authentication(registered.user_handle))
    second = options_dict(service.start_authentication(registered.user_handle))
    first_assertion = authenticator.get_assertion(first, sign_count=5)
    second_assertion = authenticator.get_assertion(second, sign_count=5)

    outcomes = _race(
        [
            lambda: service.finish_authentication(first["session_token"], first_assertion),
            lambda: service.finish_authentication(second["session_token"], second_assertion),
        ]
    )
    assert outcomes.count(registered.user_handle) == 1
    assert outcomes.count(ErrorKind.COUNTER_ROLLBACK) == 1
    assert registry.find(registered.credential_id).sign_count == 5


def test_concurrent_replay_of_one_token_single_winner(service, authenticator, registered):
    options = options_dict(service.start_authentication(registered.user_handle))
    assertion = authenticator.get_assertion(options)
    outcomes = _race(
        [lambda: service.finish_authentication(options["session_token"], assertion) for _ in range(2)]
    )
    assert outcomes.count(registered.user_handle) == 1
    assert outcomes.count(ErrorKind.CHALLENGE_NOT_FOUND) == 1


# Flow states ----------------------------------------------------------


def test_flow_transitions():
    flow = Flow(token="t", ceremony="webauthn.get")
    flow.advance(FlowState.VERIFYING)
    flow.advance(FlowState.COMPLETED)
    with pytest.raises(RuntimeError):
        flow.advance(FlowState.VERIFYING)

    failed = Flow(token="t", ceremony="webauthn.get")
    with pytest.raises(RuntimeError):
        failed.advance(FlowState.COMPLETED)
    failed.advance(FlowState.VERIFYING)
    failed.advance(FlowState.FAILED)
    with pytest.raises(RuntimeError):
        failed.advance(FlowState.VERIFYING)
