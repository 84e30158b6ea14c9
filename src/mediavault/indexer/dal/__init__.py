"""Data Access Layer (DAL) for catalog operations."""

from .users import UserDAL
from .albums import AlbumDAL
from .media import MediaDAL
from .faces import FaceDAL
from .share_tokens import ShareTokenDAL
from .site_info import SiteInfoDAL
from .scan_runs import ScanRunDAL
from .processing_errors import ProcessingErrorDAL

__all__ = [
    'UserDAL',
    'AlbumDAL',
    'MediaDAL',
    'FaceDAL',
    'ShareTokenDAL',
    'SiteInfoDAL',
    'ScanRunDAL',
    'ProcessingErrorDAL',
]
