"""Resumable mirror of the Pokémon TCG catalog into a relational store."""
