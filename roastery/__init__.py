"""Backend de la boutique: vérification du panier, paiement Stripe et réconciliation des commandes."""
