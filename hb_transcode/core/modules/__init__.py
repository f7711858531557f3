# Core modules for hb_transcode
