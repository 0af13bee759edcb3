"""
Saksham : moteur de capture terrain offline-first pour les formations
de gestion des catastrophes (événements, activités, présences, médias,
rapports journaliers géorepérés) et son API de réception.
"""

__version__ = "0.1.0"
