import pytest

from conftest import FakeRunner, write_p12
from signcascade.src.constants.passwords import COMMON_PASSWORDS
from signcascade.src.core.errors import NoWorkingPassword
from signcascade.src.core.models import BundledCertificate
from signcascade.src.credentials.password_resolver import PasswordResolver, build_candidates


def test_candidate_order_supplied_then_empty_then_dictionary():
    candidates = build_candidates("App@123")
    assert candidates[0] == "App@123"
    assert candidates[1] == ""
    assert candidates[2:] == list(COMMON_PASSWORDS)


def test_placeholder_supplied_value_is_dropped():
    for placeholder in ("placeholder", "set", "TRUE", "false", "null"):
        assert build_candidates(placeholder)[0] == ""


def test_supplied_dictionary_password_is_not_tried_twice():
    candidates = build_candidates("ios")
    assert candidates.count("ios") == 1
    assert candidates[0] == "ios"


def test_supplied_password_opens_on_first_candidate(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "App@123")
    resolver = PasswordResolver(runner=FakeRunner())

    identity = resolver.resolve(BundledCertificate(p12), "App@123")

    assert identity.password == "App@123"
    assert identity.validated
    assert resolver.last_tried == 1


def test_placeholder_skipped_and_empty_password_found_second(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "")
    resolver = PasswordResolver(runner=FakeRunner())

    identity = resolver.resolve(BundledCertificate(p12), "placeholder")

    assert identity.password == ""
    # "placeholder" is excluded, so the empty password is the first candidate
    assert resolver.last_tried == 1


def test_empty_password_is_second_after_wrong_supplied(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "")
    resolver = PasswordResolver(runner=FakeRunner())

    identity = resolver.resolve(BundledCertificate(p12), "not-the-password")

    assert identity.password == ""
    assert resolver.last_tried == 2


def test_dictionary_password_found_at_its_position(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "ios")
    resolver = PasswordResolver(runner=FakeRunner())

    identity = resolver.resolve(BundledCertificate(p12), None)

    assert identity.password == "ios"
    assert resolver.last_tried == build_candidates(None).index("ios") + 1


def test_no_working_password_reports_count_only(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "s3cret-nobody-guesses")
    resolver = PasswordResolver(runner=FakeRunner())

    with pytest.raises(NoWorkingPassword) as excinfo:
        resolver.resolve(BundledCertificate(p12), "wrong")

    assert excinfo.value.tried == len(build_candidates("wrong"))
    assert "wrong" not in str(excinfo.value)
    assert "s3cret" not in str(excinfo.value)


def test_resolve_leaves_archive_untouched(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "App@123")
    before = p12.read_bytes()

    resolver = PasswordResolver(runner=FakeRunner())
    resolver.resolve(BundledCertificate(p12), "App@123")
    resolver.resolve(BundledCertificate(p12), "App@123")

    assert p12.read_bytes() == before


def test_identity_repr_hides_password(tmp_path, signing_key, signing_cert):
    p12 = write_p12(tmp_path / "cert.p12", signing_key, signing_cert, "App@123")
    identity = PasswordResolver(runner=FakeRunner()).resolve(BundledCertificate(p12), "App@123")
    assert "App@123" not in repr(identity)
