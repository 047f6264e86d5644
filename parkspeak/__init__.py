"""ParkSpeak: speech-therapy companion with a digits-in-noise hearing screening."""
