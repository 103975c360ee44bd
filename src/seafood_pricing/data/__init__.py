"""Data subpackage - factory rate data ingestion."""
from .factory_loader import load_factories, load_factory_dir, load_factory_workbook

__all__ = ['load_factories', 'load_factory_dir', 'load_factory_workbook']
