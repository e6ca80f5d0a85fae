import io
import logging

from PIL import Image, UnidentifiedImageError
import pytesseract
from google.cloud import vision
from google.api_core.exceptions import GoogleAPIError

from expenseflow.config import settings
from expenseflow.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    "image/jpeg": [".jpg", ".jpeg"],
    "image/png": [".png"],
    "image/gif": [".gif"],
    "image/bmp": [".bmp"],
    "image/tiff": [".tiff", ".tif"],
    "image/webp": [".webp"],
}

class OCRTool:
    def __init__(self, credentials: str = settings.GOOGLE_APPLICATION_CREDENTIALS):
        self.vision_client = None
        if credentials:
            try:
                self.vision_client = vision.ImageAnnotatorClient()
            except Exception as e:
                logger.warning(f"Cloud Vision unavailable ({e}); receipts will be read with Tesseract")

    def extract_text(self, file_content: bytes, mime_type: str) -> str:
        """Raw text of a receipt image, from Cloud Vision when configured, else Tesseract."""
        if not mime_type.startswith("image/"):
            raise UpstreamServiceError(f"Unsupported file type {mime_type}", code="OCR_FAILED")
        try:
            if self.vision_client is not None:
                return self._extract_google_vision(file_content)
            return self._extract_tesseract(file_content)
        except UpstreamServiceError:
            raise
        except (UnidentifiedImageError, pytesseract.TesseractError, GoogleAPIError, OSError, RuntimeError) as e:
            logger.error(f"Text extraction failed for {mime_type} upload: {e}")
            raise UpstreamServiceError(f"Failed to extract text from image: {e}", code="OCR_FAILED")

    def _extract_google_vision(self, content: bytes) -> str:
        image = vision.Image(content=content)
        response = self.vision_client.text_detection(image=image)

        if response.error.message:
            raise UpstreamServiceError(response.error.message, code="OCR_FAILED")

        annotations = response.text_annotations
        # The first annotation carries the full detected text
        return annotations[0].description if annotations else ""

    def _extract_tesseract(self, content: bytes) -> str:
        with Image.open(io.BytesIO(content)) as img:
            return pytesseract.image_to_string(img)

ocr_tool = OCRTool()
