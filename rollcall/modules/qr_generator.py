"""
QR Generator Module - Classroom QR Attendance

Generates the QR codes printed on student cards. Each code carries the JSON
payload ``{"id": ..., "name": ...}`` understood by the scan decoder.

Features:
- Single student QR code generation
- Optional caption with the student's name and id
- Batch generation from ``id,name`` lines
"""

import base64
import io
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import qrcode
from PIL import Image, ImageDraw, ImageFont

from rollcall.modules.scan_decoder import default_student_name


class QRGenerator:
    """
    QR code generator for student attendance cards.
    Results are returned as base64 PNG data so callers can embed or save them.
    """

    def __init__(self, box_size: int = 10, border: int = 4):
        """Initialize the QR code generator with default settings."""
        self.logger = logging.getLogger(__name__)

        self.default_settings = {
            'version': 1,
            'error_correction': qrcode.constants.ERROR_CORRECT_M,
            'box_size': box_size,
            'border': border,
            'fill_color': 'black',
            'back_color': 'white'
        }

    @staticmethod
    def payload_for(student_id: str, name: Optional[str] = None) -> str:
        """JSON text encoded in a student's QR code."""
        return json.dumps({'id': student_id, 'name': name or default_student_name(student_id)})

    def generate_student_qr_code(self, student_id: str, name: Optional[str] = None,
                                 with_caption: bool = False,
                                 custom_settings: dict = None) -> Dict[str, Any]:
        """
        Generate a QR code for one student.

        Args:
            student_id (str): Student id
            name (str): Display name, defaults to ``Student {id}``
            with_caption (bool): Draw name and id under the code
            custom_settings (dict): Overrides for the default QR settings

        Returns:
            Dict[str, Any]: Generation result with image data
        """
        student_id = (student_id or '').strip()
        if not student_id:
            return {'success': False, 'error': 'Missing student ID', 'student_id': ''}

        name = (name or '').strip() or default_student_name(student_id)
        settings = self.default_settings.copy()
        if custom_settings:
            settings.update(custom_settings)

        qr_data = self.payload_for(student_id, name)

        qr = qrcode.QRCode(
            version=settings['version'],
            error_correction=settings['error_correction'],
            box_size=settings['box_size'],
            border=settings['border']
        )
        qr.add_data(qr_data)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=settings['fill_color'],
            back_color=settings['back_color']
        ).convert('RGB')

        if with_caption:
            img = self._add_caption(img, name, student_id)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()

        self.logger.info(f"QR code generated for student {student_id}")
        return {
            'success': True,
            'student_id': student_id,
            'name': name,
            'qr_data': qr_data,
            'image_base64': img_base64,
            'image_size': img.size,
            'filename': f"student-qr-{self.safe_filename(student_id)}.png",
            'generated_at': datetime.now().isoformat()
        }

    @staticmethod
    def safe_filename(student_id: str) -> str:
        return re.sub(r'[^A-Za-z0-9_-]', '_', student_id)

    def _add_caption(self, qr_img: Image.Image, name: str, student_id: str) -> Image.Image:
        """
        Add the student's name and id under the QR code.

        Args:
            qr_img (Image.Image): QR code image
            name (str): Student name
            student_id (str): Student id

        Returns:
            Image.Image: QR code with caption
        """
        width, height = qr_img.size
        captioned = Image.new('RGB', (width, height + 50), 'white')
        captioned.paste(qr_img, (0, 0))

        draw = ImageDraw.Draw(captioned)
        try:
            font_large = ImageFont.truetype("arial.ttf", 16)
            font_small = ImageFont.truetype("arial.ttf", 12)
        except (IOError, OSError):
            font_large = ImageFont.load_default()
            font_small = ImageFont.load_default()

        text_y = height + 5
        for text, font, offset in ((name, font_large, 0), (f"ID: {student_id}", font_small, 22)):
            bbox = draw.textbbox((0, 0), text, font=font)
            text_width = bbox[2] - bbox[0]
            draw.text(((width - text_width) // 2, text_y + offset), text, fill='black', font=font)

        return captioned

    @staticmethod
    def parse_batch_lines(batch_text: str) -> List[Tuple[str, str]]:
        """Split ``id,name`` lines, ignoring blank lines."""
        students = []
        for line in re.split(r'\r?\n', batch_text or ''):
            if not line.strip():
                continue
            parts = [part.strip() for part in line.split(',', 1)]
            student_id = parts[0]
            name = parts[1] if len(parts) > 1 else ''
            students.append((student_id, name))
        return students

    def batch_generate_qr_codes(self, batch_text: str, with_caption: bool = False) -> Dict[str, Any]:
        """
        Generate QR codes for every ``id,name`` line.

        Args:
            batch_text (str): One student per line
            with_caption (bool): Draw name and id under each code

        Returns:
            Dict[str, Any]: Batch generation results
        """
        students = self.parse_batch_lines(batch_text)
        results = {
            'success': True,
            'total_students': len(students),
            'successful': 0,
            'failed': 0,
            'results': [],
            'errors': []
        }

        for line_number, (student_id, name) in enumerate(students, start=1):
            qr_result = self.generate_student_qr_code(student_id, name, with_caption)
            if qr_result['success']:
                results['successful'] += 1
                results['results'].append(qr_result)
            else:
                results['failed'] += 1
                results['errors'].append({'line': line_number, 'error': qr_result['error']})

        if results['failed'] > 0:
            results['success'] = False

        self.logger.info(f"Batch QR generation completed: {results['successful']}/{results['total_students']} successful")
        return results
