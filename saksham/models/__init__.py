# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant la création des tables au démarrage de l'API.

from saksham.models.received_record import ReceivedRecord  # noqa: F401
