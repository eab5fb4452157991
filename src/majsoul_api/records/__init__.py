from .resolver import LegacyLayout, ModernLayout, RecordResolver, select_layout

__all__ = ["LegacyLayout", "ModernLayout", "RecordResolver", "select_layout"]
