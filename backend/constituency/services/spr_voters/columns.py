"""
SPR CSV column layout
"""
from typing import Dict, List

# CSV header -> spr_voters column, in export order
SPR_COLUMN_FIELDS: Dict[str, str] = {
    "NoSiri": "no_siri",
    "NoKp": "no_kp",
    "NoKpLama": "no_kp_lama",
    "Nama": "nama",
    "NoHP": "no_hp",
    "Jantina": "jantina",
    "TarikhLahir": "tarikh_lahir",
    "Bangsa": "bangsa",
    "agama": "agama",
    "Kategorikaum": "kategori_kaum",
    "NoRumah": "no_rumah",
    "alamat": "alamat",
    "poskod": "poskod",
    "daerah": "daerah",
    "KodLokaliti": "kod_lokaliti",
    "NamaParlimen": "nama_parlimen",
    "NamaDun": "nama_dun",
    "NamaPDM": "nama_pdm",
    "NamaLokaliti": "nama_lokaliti",
    "KategoriUNDI": "kategori_undi",
    "NamaTM": "nama_tm",
    "MasaUndi": "masa_undi",
    "Saluran": "saluran",
}

SPR_CSV_HEADER: List[str] = list(SPR_COLUMN_FIELDS.keys())

REQUIRED_COLUMN = "Nama"
INTEGER_COLUMNS = ("NoSiri", "Saluran")
DATE_COLUMNS = ("TarikhLahir",)
