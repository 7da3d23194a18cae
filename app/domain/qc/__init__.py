"""QC domain - review queue, photo approval and final delivery"""
