"""Multi-specialist medical report analysis with a consensus synthesis and follow-up chat."""
