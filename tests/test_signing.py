import pytest

from app.services.ota.signing import Signer, SignatureError, compute_hash, generate_key_pair


def test_compute_hash_is_sha256_hex():
    assert compute_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert len(compute_hash(b"firmware")) == 64


def test_sign_then_verify(signing_keys):
    private_pem, public_pem = signing_keys
    signer = Signer(private_pem, public_pem)
    signature = signer.sign(b"firmware bytes")
    signer.verify(b"firmware bytes", signature)


def test_verify_rejects_modified_data(signing_keys):
    signer = Signer(*signing_keys)
    signature = signer.sign(b"firmware bytes")
    with pytest.raises(SignatureError):
        signer.verify(b"firmware bytez", signature)


def test_verify_rejects_garbage_signature(signing_keys):
    signer = Signer(*signing_keys)
    with pytest.raises(SignatureError):
        signer.verify(b"firmware bytes", "not base64!!")


def test_public_key_derived_from_private_key(signing_keys):
    private_pem, _ = signing_keys
    signer = Signer(private_key_pem=private_pem)
    signer.verify(b"data", signer.sign(b"data"))


def test_verify_only_signer_cannot_sign(signing_keys):
    _, public_pem = signing_keys
    signer = Signer(public_key_pem=public_pem)
    with pytest.raises(SignatureError):
        signer.sign(b"data")


def test_signature_from_other_key_rejected(signing_keys):
    other = Signer(*generate_key_pair())
    signer = Signer(*signing_keys)
    with pytest.raises(SignatureError):
        signer.verify(b"data", other.sign(b"data"))


def test_from_files(tmp_path, signing_keys):
    private_pem, public_pem = signing_keys
    (tmp_path / "priv.pem").write_bytes(private_pem)
    (tmp_path / "pub.pem").write_bytes(public_pem)
    signer = Signer.from_files(str(tmp_path / "priv.pem"), str(tmp_path / "pub.pem"))
    signer.verify(b"x", signer.sign(b"x"))
