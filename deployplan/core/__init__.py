"""Core machinery: graph, resolver, store, journal, sequencer and engine."""
