from cmdvault.importers.json_importer import JsonImporter, export_to_file

__all__ = ["JsonImporter", "export_to_file"]
