"""
QR Code Generator Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module builds and reads the payload carried by attendance QR codes and
renders it to images. A payload is a small JSON document naming the QR
session, its secret and the organization it belongs to:

    {"id": "<public id>", "data": "<secret>", "org": <organization id>}

Features:
- Secret and public identifier generation
- Payload encoding and validation
- PNG rendering as base64 data URLs
- Printable PDF sheets of several QR codes
"""

import qrcode
import io
import base64
import json
import secrets
from datetime import datetime
import os
import logging
from typing import Dict, Any, List, Union

from config import QRCodeConfig

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H,
}


class QRGenerator:
    """
    QR code payload and image generator for the attendance API.
    """

    def __init__(self, output_dir: str = 'exports'):
        """
        Initialize the QR code generator with default settings.

        Args:
            output_dir (str): Directory where printable PDFs are written
        """
        self.logger = logging.getLogger(__name__)
        self.output_dir = str(output_dir)

        self.default_settings = {
            'version': QRCodeConfig.VERSION,
            'error_correction': ERROR_CORRECTION_LEVELS[QRCodeConfig.ERROR_CORRECTION],
            'box_size': QRCodeConfig.BOX_SIZE,
            'border': QRCodeConfig.BORDER,
            'fill_color': QRCodeConfig.FILL_COLOR,
            'back_color': QRCodeConfig.BACK_COLOR
        }

    def generate_secret(self) -> str:
        """Random hex secret embedded in the payload."""
        return secrets.token_hex(QRCodeConfig.SECRET_BYTES)

    def generate_public_id(self) -> str:
        """Opaque identifier used in URLs and payloads."""
        return secrets.token_urlsafe(12)

    def build_payload(self, public_id: str, secret: str, organization_id: int) -> str:
        """
        Encode the payload carried by a QR code.

        Args:
            public_id (str): Public QR session identifier
            secret (str): Session secret
            organization_id (int): Owning organization

        Returns:
            str: Compact JSON payload
        """
        return json.dumps(
            {'id': public_id, 'data': secret, 'org': organization_id},
            separators=(',', ':')
        )

    def parse_payload(self, raw: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate and decode a scanned payload.

        Args:
            raw: JSON string read by the scanner, or an already decoded dict

        Returns:
            Dict[str, Any]: ``valid`` flag with either the decoded ``data`` or
            an ``error`` and ``error_type`` (``invalid_format`` / ``invalid_qr``)
        """
        if isinstance(raw, dict):
            decoded = raw
        else:
            if not isinstance(raw, str) or not raw.strip():
                return {
                    'valid': False,
                    'error': 'QR code data is required',
                    'error_type': 'invalid_format'
                }
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError:
                return {
                    'valid': False,
                    'error': 'Invalid QR code format',
                    'error_type': 'invalid_format'
                }

        if not isinstance(decoded, dict):
            return {
                'valid': False,
                'error': 'Invalid QR code format',
                'error_type': 'invalid_format'
            }

        for field in ('id', 'data'):
            if not decoded.get(field) or not isinstance(decoded[field], str):
                return {
                    'valid': False,
                    'error': 'Invalid QR code',
                    'error_type': 'invalid_qr'
                }

        organization_id = decoded.get('org')
        if organization_id is not None:
            try:
                organization_id = int(organization_id)
            except (TypeError, ValueError):
                return {
                    'valid': False,
                    'error': 'Invalid QR code',
                    'error_type': 'invalid_qr'
                }

        return {
            'valid': True,
            'data': {
                'id': decoded['id'],
                'data': decoded['data'],
                'org': organization_id
            }
        }

    def render_image(self, payload: str, custom_settings: Dict[str, Any] = None) -> Dict[str, Any]:
        """
        Render a payload to a PNG image.

        Args:
            payload (str): Text to encode
            custom_settings (Dict[str, Any]): Overrides for the default settings

        Returns:
            Dict[str, Any]: ``image_base64``, ``data_url`` and ``image_size``
        """
        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        )

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()

        return {
            'image_base64': img_base64,
            'data_url': f"data:image/png;base64,{img_base64}",
            'image_size': img.size
        }

    def create_bulk_qr_pdf(self, qr_codes: List[Dict[str, Any]],
                           output_filename: str = None) -> Dict[str, Any]:
        """
        Create a PDF containing multiple QR codes for printing.

        Args:
            qr_codes (List[Dict[str, Any]]): Sessions with a ``payload`` and
                optional ``event_name`` and ``valid_until`` labels
            output_filename (str): Output PDF filename

        Returns:
            Dict[str, Any]: PDF creation result with the written path
        """
        try:
            from reportlab.pdfgen import canvas
            from reportlab.lib.pagesizes import A4
            from reportlab.lib.utils import ImageReader

            if not qr_codes:
                return {'success': False, 'error': 'No QR codes to print', 'error_type': 'validation'}

            if not output_filename:
                output_filename = f"qr_codes_{datetime.now().strftime('%Y%m%d_%H%M%S')}.pdf"

            os.makedirs(self.output_dir, exist_ok=True)
            output_path = os.path.join(self.output_dir, output_filename)

            c = canvas.Canvas(output_path, pagesize=A4)
            width, height = A4

            qr_per_row = QRCodeConfig.PDF_PER_ROW
            qr_per_col = QRCodeConfig.PDF_PER_COLUMN
            qr_per_page = qr_per_row * qr_per_col

            cell_width = width / qr_per_row
            cell_height = height / qr_per_col
            qr_size = min(cell_width, cell_height) * 0.7

            for i, qr_code in enumerate(qr_codes):
                if i > 0 and i % qr_per_page == 0:
                    c.showPage()

                row = (i % qr_per_page) // qr_per_row
                col = (i % qr_per_page) % qr_per_row

                x = col * cell_width + (cell_width - qr_size) / 2
                y = height - (row + 1) * cell_height + (cell_height - qr_size) / 2 + 15

                image = self.render_image(qr_code['payload'])
                img_reader = ImageReader(io.BytesIO(base64.b64decode(image['image_base64'])))
                c.drawImage(img_reader, x, y, width=qr_size, height=qr_size)

                c.setFont('Helvetica-Bold', 10)
                label = qr_code.get('event_name') or qr_code.get('organization_name') or 'Attendance'
                c.drawCentredString(x + qr_size / 2, y - 12, str(label)[:40])
                if qr_code.get('valid_until'):
                    c.setFont('Helvetica', 8)
                    c.drawCentredString(x + qr_size / 2, y - 24, f"Valid until {qr_code['valid_until']}")

            c.save()

            self.logger.info(f"Printable QR sheet written to {output_path}")
            return {
                'success': True,
                'filename': output_filename,
                'path': output_path,
                'total_qr_codes': len(qr_codes)
            }

        except Exception as e:
            self.logger.error(f"PDF generation failed: {str(e)}")
            return {
                'success': False,
                'error': 'Failed to generate QR code PDF',
                'error_type': 'server_error'
            }
