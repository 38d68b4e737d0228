"""Client toolkit used by clinician workstations to talk to the API.

Notes and templates go through :class:`mentalspace.client.documentation.DocumentationService`
(wired by :func:`~mentalspace.client.documentation.build_documentation_service`);
client records through :class:`mentalspace.client.clients.ClientRecordsService`.
"""
