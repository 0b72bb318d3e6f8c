"""Armazenamento em disco das fotos enviadas pelos gesseiros."""

import os
import time
import random
import logging
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif"}
CHUNK_SIZE = 64 * 1024
# Prefixo público dos arquivos, servido estaticamente em /uploads
PUBLIC_PREFIX = "uploads"


class UploadError(Exception):
    """Arquivo rejeitado: tipo não permitido ou tamanho acima do limite."""


class PhotoStorage:
    """Grava arquivos de imagem em um diretório e remove-os quando a foto é apagada."""

    def __init__(self, upload_dir: str, max_size: int = 5 * 1024 * 1024):
        self.upload_dir = upload_dir
        self.max_size = max_size
        os.makedirs(self.upload_dir, exist_ok=True)

    @staticmethod
    def validate(filename: Optional[str], content_type: Optional[str]) -> str:
        """Confere extensão e MIME type contra a lista de imagens permitidas e devolve a extensão."""
        ext = os.path.splitext(filename or "")[1].lower()
        mime = (content_type or "").lower()
        if ext not in ALLOWED_EXTENSIONS or mime not in ALLOWED_MIME_TYPES:
            raise UploadError("Apenas imagens são permitidas!")
        return ext

    @staticmethod
    def unique_name(ext: str) -> str:
        unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        return f"gesseiro-{unique_suffix}{ext}"

    def save(self, stream: BinaryIO, filename: Optional[str], content_type: Optional[str]) -> str:
        """
        Valida e grava o arquivo. Retorna o caminho público ('uploads/<nome>').
        Em caso de erro nenhum arquivo parcial fica no disco.
        """
        ext = self.validate(filename, content_type)
        stored_name = self.unique_name(ext)
        destination = os.path.join(self.upload_dir, stored_name)

        written = 0
        try:
            with open(destination, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_size:
                        raise UploadError(f"Arquivo muito grande! Tamanho máximo: {self.max_size / (1024 * 1024):g}MB")
                    out.write(chunk)
        except BaseException:
            self._discard(destination)
            raise

        logger.info(f"Arquivo salvo: {stored_name} ({written} bytes)")
        return f"{PUBLIC_PREFIX}/{stored_name}"

    def path_for(self, url_foto: str) -> str:
        """Resolve o caminho em disco a partir do caminho público salvo no banco."""
        return os.path.join(self.upload_dir, os.path.basename(url_foto))

    def delete(self, url_foto: str) -> bool:
        """
        Remove o arquivo de uma foto. Arquivo ausente é ignorado.
        Retorna False se a remoção falhou; o erro é apenas registrado.
        """
        path = self.path_for(url_foto)
        if not os.path.exists(path):
            logger.info(f"Arquivo {path} já não existe, nada a remover.")
            return True
        try:
            os.remove(path)
            logger.info(f"Arquivo removido: {path}")
            return True
        except OSError as e:
            logger.error(f"Falha ao remover arquivo {path}: {e}", exc_info=True)
            return False

    def _discard(self, path: str):
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.error(f"Falha ao descartar upload parcial {path}: {e}")
