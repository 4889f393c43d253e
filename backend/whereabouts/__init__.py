"""whereabouts – scheduled, freshness-bounded city-level location sampling."""
