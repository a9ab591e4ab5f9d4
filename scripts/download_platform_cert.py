import argparse
import asyncio
import logging
import sys
from pathlib import Path

from tomafit.core.config import settings
from tomafit.engine.payment import WechatPayClient
from tomafit.services.exceptions import ServiceException

# --- Setup Logging ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

def write_certificates(certificates, output_dir: Path) -> list[Path]:
    """Writes each certificate as wechatpay_<serial>.pem; existing files are overwritten."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for cert in certificates:
        path = output_dir / f"wechatpay_{cert.serial_no}.pem"
        path.write_text(cert.pem, encoding="utf-8")
        logger.info(f"Saved certificate {cert.serial_no} (valid {cert.effective_time} ~ {cert.expire_time}) to {path}")
        written.append(path)
    return written

async def main(output_dir: Path) -> int:
    payment_config = settings.payment_config()
    if payment_config is None:
        logger.critical("Payment is not configured. Set the WECHAT_* variables in .env first.")
        return 1

    client = WechatPayClient.from_config(payment_config)
    try:
        certificates = await client.download_certificates()
    except ServiceException as e:
        logger.critical(f"Failed to download platform certificates: {e.message} {e.context}")
        return 1
    finally:
        await client.aclose()

    if not certificates:
        logger.warning("The provider returned no certificates.")
        return 1

    write_certificates(certificates, output_dir)
    logger.info(f"Point WECHAT_PLATFORM_CERT_PATH at {output_dir} to trust these certificates.")
    return 0

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Download and decrypt the payment platform certificates.")
    parser.add_argument(
        "--output-dir",
        default="certs/platform",
        help="Directory the wechatpay_<serial>.pem files are written to (default: certs/platform)",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(main(Path(args.output_dir))))
