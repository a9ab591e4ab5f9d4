# tomafit/engine/payment/crypto.py

import base64
import binascii
from pathlib import Path
from typing import Dict, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tomafit.services.exceptions import ConfigurationError, DecryptionFailedError

GCM_TAG_LENGTH = 16
API_V3_KEY_LENGTH = 32

# ==============================================================================
# 密钥与证书加载
# ==============================================================================

def load_private_key(path: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Cannot load merchant private key from '{path}'.", error=str(e))
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError(f"Merchant private key at '{path}' is not an RSA key.")
    return key

def certificate_serial(cert: x509.Certificate) -> str:
    """Upper-case hex, the form the provider puts in the `*-Serial` header."""
    return format(cert.serial_number, "X")

def load_certificate(path: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(Path(path).read_bytes())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot load certificate from '{path}'.", error=str(e))

def load_public_key(path: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(Path(path).read_bytes())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot load public key from '{path}'.", error=str(e))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigurationError(f"Public key at '{path}' is not an RSA key.")
    return key

def load_platform_certificates(path: str) -> Dict[str, rsa.RSAPublicKey]:
    """
    读取平台证书，返回 {serial: public_key}。
    path 可以是单个 PEM 文件，也可以是存放多个 *.pem 的目录 (证书轮换期间新旧证书并存)。
    """
    target = Path(path)
    if target.is_dir():
        files = sorted(target.glob("*.pem"))
    elif target.is_file():
        files = [target]
    else:
        raise ConfigurationError(f"Platform certificate path '{path}' does not exist.")

    keys: Dict[str, rsa.RSAPublicKey] = {}
    for file in files:
        cert = load_certificate(str(file))
        keys[certificate_serial(cert)] = cert.public_key()
    if not keys:
        raise ConfigurationError(f"No platform certificates found under '{path}'.")
    return keys

# ==============================================================================
# 签名与验签 (SHA256-RSA2048, PKCS#1 v1.5)
# ==============================================================================

def build_message(*parts: str) -> str:
    """每个字段各占一行，末尾也带换行。"""
    return "".join(f"{part}\n" for part in parts)

def rsa_sign(private_key: rsa.RSAPrivateKey, message: str) -> str:
    signature = private_key.sign(message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")

def rsa_verify(public_key: rsa.RSAPublicKey, message: bytes, signature_b64: str) -> bool:
    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except (binascii.Error, ValueError):
        return False
    try:
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True

# ==============================================================================
# AEAD_AES_256_GCM 解密
# ==============================================================================

def check_api_v3_key(api_v3_key: str) -> bytes:
    key = api_v3_key.encode("utf-8")
    if len(key) != API_V3_KEY_LENGTH:
        raise ConfigurationError("API v3 key must be exactly 32 bytes.")
    return key

def split_tag(data: bytes) -> Tuple[bytes, bytes]:
    """密文末尾 16 字节是 GCM 认证标签。"""
    if len(data) <= GCM_TAG_LENGTH:
        raise DecryptionFailedError("Ciphertext is shorter than the authentication tag.")
    return data[:-GCM_TAG_LENGTH], data[-GCM_TAG_LENGTH:]

def aead_decrypt(key: bytes, nonce: str, associated_data: str, ciphertext_b64: str) -> bytes:
    try:
        data = base64.b64decode(ciphertext_b64, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionFailedError("Ciphertext is not valid base64.")

    ciphertext, tag = split_tag(data)
    try:
        decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce.encode("utf-8"), tag)).decryptor()
        if associated_data:
            decryptor.authenticate_additional_data(associated_data.encode("utf-8"))
        return decryptor.update(ciphertext) + decryptor.finalize()
    except InvalidTag:
        raise DecryptionFailedError("Payload authentication failed.")
    except ValueError as e:
        # nonce 长度非法等
        raise DecryptionFailedError("Payload cannot be decrypted.", error=str(e))
