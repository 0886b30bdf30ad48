"""sopdesk.integrations — external collaborator adapters.

Services never talk to storage backends directly; they receive a
collaborator object from this package.

Current collaborators:
  file_storage.LocalFileStorage — external SOP documents on local disk
"""
