"""Client-side counterparts of the bloxr API: the browser chat exchange and the Studio plugin poller."""
