"""Hotel booking checkout: guest roster, price lock, payment session, redirect."""
