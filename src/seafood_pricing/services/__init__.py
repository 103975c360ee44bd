"""Services subpackage - facades called by the external API layer."""
from .mapping_service import MappingService
from .quote_service import QuoteService

__all__ = ['MappingService', 'QuoteService']
