# taskvault/__init__.py
# Description: Two-way synchroniser between a Todoist account and a markdown vault
#
__version__ = "0.3.0"
