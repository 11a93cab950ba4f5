import base64, binascii, os

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, padding, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

CURVE = ec.SECP256K1()
IV_SEP = "?iv="


class DecryptionError(Exception):
    """Raised when a direct message cannot be decrypted with our secret key."""
    pass


class Keys:
    '''
    Identity of one participant: a secp256k1 keypair.
    The public half (hex of the compressed point) is the address other
    participants use for direct messages.
    '''
    def __init__(self, secret_key: ec.EllipticCurvePrivateKey):
        self._secret_key = secret_key
        self.public_key = public_hex(secret_key.public_key())

    @classmethod
    def generate(cls) -> "Keys":
        return cls(ec.generate_private_key(CURVE))

    @classmethod
    def from_secret_hex(cls, secret_hex: str) -> "Keys":
        return cls(ec.derive_private_key(int(secret_hex, 16), CURVE))

    def secret_key(self) -> ec.EllipticCurvePrivateKey:
        return self._secret_key

    def secret_hex(self) -> str:
        return format(self._secret_key.private_numbers().private_value, "064x")

    def __repr__(self):
        return f"Keys(public_key={self.public_key!r})"


def public_hex(pub: ec.EllipticCurvePublicKey) -> str:
    ''' This function encodes a public key as hex of the compressed SEC1 point (33 bytes) '''
    raw = pub.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint
    )
    return raw.hex()

def load_public_key(pubkey_hex: str) -> ec.EllipticCurvePublicKey:
    '''
    This function parses a participant's public key.
    Input: hex string of a compressed (or uncompressed) secp256k1 point
    Output: public key object
    Raises ValueError if the string is not a valid point on the curve.
    '''
    try:
        raw = bytes.fromhex(pubkey_hex.strip())
    except (ValueError, AttributeError):
        raise ValueError(f"not a hex public key: {pubkey_hex!r}")
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, raw)

def is_valid_public_key(pubkey_hex: str) -> bool:
    try:
        load_public_key(pubkey_hex)
    except ValueError:
        return False
    return True

def shared_secret(secret: ec.EllipticCurvePrivateKey, pubkey_hex: str) -> bytes:
    ''' ECDH between our secret key and the peer's public key; the 32-byte x coordinate is the AES key '''
    return secret.exchange(ec.ECDH(), load_public_key(pubkey_hex))


def encrypt(secret: ec.EllipticCurvePrivateKey, recipient_hex: str, plaintext: str) -> str:
    '''
    This function encrypts a direct message for one recipient.
    Input:
        - secret: sender's private key
        - recipient_hex: recipient's public key (hex)
        - plaintext: message text
    Output: "<base64 ciphertext>?iv=<base64 iv>"
    '''
    key = shared_secret(secret, recipient_hex)
    iv = os.urandom(16)  # random 128-bit IV per message
    padder = padding.PKCS7(128).padder()
    data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    enc = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = enc.update(data) + enc.finalize()
    return b64(ct) + IV_SEP + b64(iv)

def decrypt(secret: ec.EllipticCurvePrivateKey, sender_hex: str, content: str) -> str:
    '''
    This function decrypts a direct message sent to us.
    Input:
        - secret: our private key
        - sender_hex: sender's public key (hex)
        - content: "<base64 ciphertext>?iv=<base64 iv>"
    Output: plaintext string
    Raises DecryptionError on any failure (wrong key, corrupted or foreign content).
    '''
    try:
        ct_b64, iv_b64 = content.split(IV_SEP)
        ct, iv = b64d(ct_b64), b64d(iv_b64)
        if len(iv) != 16:
            raise ValueError("iv must be 16 bytes")
        key = shared_secret(secret, sender_hex)
        dec = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        data = dec.update(ct) + dec.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plain = unpadder.update(data) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, AttributeError, binascii.Error) as e:
        # UnicodeDecodeError is a ValueError too
        raise DecryptionError(str(e)) from e


def sign(secret: ec.EllipticCurvePrivateKey, event_id: str) -> str:
    ''' This function signs an event id; returns the hex DER signature '''
    return secret.sign(bytes.fromhex(event_id), ec.ECDSA(hashes.SHA256())).hex()

def verify(pubkey_hex: str, event_id: str, sig_hex: str) -> bool:
    ''' This function checks a signature made by sign() '''
    try:
        pub = load_public_key(pubkey_hex)
        pub.verify(bytes.fromhex(sig_hex), bytes.fromhex(event_id), ec.ECDSA(hashes.SHA256()))
    except (ValueError, InvalidSignature):
        return False
    return True


def b64(b: bytes) -> str:
    ''' This function encodes bytes to a Base64 string '''
    return base64.b64encode(b).decode()

def b64d(s: str) -> bytes:
    ''' This function decodes a Base64 string to bytes '''
    return base64.b64decode(s.encode(), validate=True)
